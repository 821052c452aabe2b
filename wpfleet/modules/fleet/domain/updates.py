"""
Bulk Update Orchestrator

Applies plugin/theme updates across many sites:
- requests are grouped per site, preserving input order within each group;
- site-groups run in sequential batches of at most `concurrency_limit` sites;
- within a site, updates are applied one at a time (WordPress holds a single
  update lock per site);
- after a site's updates, its inventory is re-read from the site and the
  local rows are overwritten (reconciliation, best-effort).

Every request yields exactly one UpdateResult. Only input validation raises.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from wpfleet.models.site import Site
from wpfleet.modules.fleet.domain.clients import SiteClientFactory, build_site_client
from wpfleet.modules.fleet.domain.store import InventoryStore
from wpfleet.modules.fleet.domain.types import (
    BulkUpdateResponse,
    BulkUpdateSummary,
    ItemType,
    UpdateLogEntry,
    UpdateRequest,
    UpdateResult,
    UpdateStatus,
)
from wpfleet.shared.adapters.base import AppliedUpdate, RemoteSiteClient
from wpfleet.shared.adapters.rate_limiter import RateLimiter, with_rate_limit
from wpfleet.shared.core.config import get_settings
from wpfleet.shared.core.exceptions import (
    CredentialError,
    ReconciliationError,
    RemoteConnectionError,
    SiteNotFoundError,
    ValidationError,
)
from wpfleet.shared.core.ops_metrics import (
    BULK_UPDATE_DURATION,
    BULK_UPDATE_RESULTS,
    RECONCILIATION_FAILURES,
)

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Cancelled before execution"


@dataclass
class _SiteGroup:
    site: Site
    # (input position, request), in input order
    items: List[Tuple[int, UpdateRequest]] = field(default_factory=list)


class BulkUpdateOrchestrator:
    def __init__(
        self,
        store: InventoryStore,
        client_factory: SiteClientFactory = build_site_client,
        concurrency_limit: Optional[int] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.store = store
        self.client_factory = client_factory
        if concurrency_limit is None:
            concurrency_limit = get_settings().BULK_UPDATE_CONCURRENCY
        self.concurrency_limit = concurrency_limit
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        self.rate_limiter = rate_limiter

    @staticmethod
    def validate_requests(requests: Iterable[Any]) -> List[UpdateRequest]:
        """Coerce raw input into UpdateRequests, rejecting empty or malformed batches."""
        requests = list(requests)
        if not requests:
            raise ValidationError("No updates provided")

        validated: List[UpdateRequest] = []
        for position, raw in enumerate(requests):
            if isinstance(raw, UpdateRequest):
                validated.append(raw)
                continue
            try:
                validated.append(UpdateRequest.model_validate(raw))
            except PydanticValidationError as e:
                raise ValidationError(
                    "Validation failed",
                    details={"index": position, "errors": e.errors(include_url=False)},
                ) from e
        return validated

    async def apply_updates(
        self,
        requests: Iterable[Any],
        *,
        deadline_seconds: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkUpdateResponse:
        """
        Apply a batch of updates.

        Once `deadline_seconds` elapses or `cancel_event` is set, no further
        batch is started; site-groups already running are allowed to finish
        and the ones never started are reported as failed.
        """
        validated = self.validate_requests(requests)
        if deadline_seconds is None:
            deadline_seconds = get_settings().BULK_UPDATE_DEADLINE_SECONDS

        run_id = str(uuid.uuid4())
        start_time = time.perf_counter()
        with structlog.contextvars.bound_contextvars(bulk_update_id=run_id):
            logger.info("bulk_update_started", total=len(validated))

            results, unknown_site_ids = await self._execute(
                validated, deadline_seconds, cancel_event
            )
            await self._persist_log(results, unknown_site_ids)

            summary = BulkUpdateSummary(
                total=len(results),
                successful=sum(1 for r in results if r.status == UpdateStatus.SUCCESS),
                failed=sum(1 for r in results if r.status == UpdateStatus.FAILED),
            )
            for result in results:
                BULK_UPDATE_RESULTS.labels(
                    item_type=result.item_type.value, status=result.status.value
                ).inc()
            duration = time.perf_counter() - start_time
            BULK_UPDATE_DURATION.observe(duration)

            logger.info(
                "bulk_update_completed",
                successful=summary.successful,
                failed=summary.failed,
                seconds=round(duration, 2),
            )
        return BulkUpdateResponse(results=results, summary=summary)

    async def _execute(
        self,
        requests: List[UpdateRequest],
        deadline_seconds: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[List[UpdateResult], Set[int]]:
        loop = asyncio.get_running_loop()
        expires_at = loop.time() + deadline_seconds if deadline_seconds is not None else None
        slots: List[Optional[UpdateResult]] = [None] * len(requests)

        grouped: Dict[int, List[Tuple[int, UpdateRequest]]] = {}
        for position, request in enumerate(requests):
            grouped.setdefault(request.site_id, []).append((position, request))

        try:
            sites = await self.store.get_sites_by_ids(grouped.keys())
        except Exception as e:
            logger.error("bulk_update_site_lookup_failed", error=str(e))
            return (
                [UpdateResult.failed(r, f"Site lookup failed: {e}") for r in requests],
                set(grouped),
            )

        groups: List[_SiteGroup] = []
        unknown_site_ids: Set[int] = set()
        for site_id, items in grouped.items():
            site = sites.get(site_id)
            if site is None:
                missing = SiteNotFoundError(site_id)
                logger.warning("bulk_update_site_not_found", site_id=site_id, code=missing.code)
                unknown_site_ids.add(site_id)
                for position, request in items:
                    slots[position] = UpdateResult.failed(request, missing.message)
                continue
            groups.append(_SiteGroup(site=site, items=items))

        for batch_start in range(0, len(groups), self.concurrency_limit):
            if self._should_stop(loop, expires_at, cancel_event):
                remaining = groups[batch_start:]
                logger.warning(
                    "bulk_update_cancelled",
                    remaining_sites=len(remaining),
                    remaining_items=sum(len(g.items) for g in remaining),
                )
                for group in remaining:
                    for position, request in group.items:
                        slots[position] = UpdateResult.failed(request, CANCELLED_MESSAGE)
                break

            batch = groups[batch_start:batch_start + self.concurrency_limit]
            batch_results = await asyncio.gather(
                *(self._process_site_group_settled(group) for group in batch)
            )
            for group, group_results in zip(batch, batch_results):
                for (position, _), result in zip(group.items, group_results):
                    slots[position] = result

        return [slot for slot in slots if slot is not None], unknown_site_ids

    @staticmethod
    def _should_stop(
        loop: asyncio.AbstractEventLoop,
        expires_at: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return expires_at is not None and loop.time() >= expires_at

    async def _process_site_group_settled(self, group: _SiteGroup) -> List[UpdateResult]:
        """Never raises: an unexpected site-level error fails the whole group."""
        try:
            return await self._process_site_group(group)
        except Exception as e:
            logger.error("bulk_update_site_failed", site_id=group.site.id, error=str(e))
            message = str(e) or "Site connection failed"
            return [UpdateResult.failed(request, message) for _, request in group.items]

    async def _process_site_group(self, group: _SiteGroup) -> List[UpdateResult]:
        site = group.site
        try:
            client = self.client_factory(site)
        except CredentialError as e:
            logger.warning("bulk_update_credentials_unusable", site_id=site.id, error=e.message)
            return [UpdateResult.failed(request, e.message) for _, request in group.items]

        try:
            return await self._apply_site_items(client, group)
        finally:
            await self._close_client(client, site.id)

    async def _apply_site_items(
        self, client: RemoteSiteClient, group: _SiteGroup
    ) -> List[UpdateResult]:
        site = group.site
        local_versions = await self._local_versions(site.id)
        results: List[UpdateResult] = []
        unreachable: Optional[str] = None

        for _, request in group.items:
            from_version = local_versions.get((request.item_type, request.slug))
            if unreachable is not None:
                # No further remote calls once the site is known to be unreachable.
                results.append(UpdateResult.failed(request, unreachable, from_version))
                continue

            try:
                applied = await self._apply_one(client, request)
            except RemoteConnectionError as e:
                unreachable = f"Site unreachable: {e.message}"
                logger.warning("bulk_update_site_unreachable", site_id=site.id, error=e.message)
                results.append(UpdateResult.failed(request, unreachable, from_version))
                continue
            except Exception as e:
                logger.info(
                    "bulk_update_item_failed",
                    site_id=site.id,
                    item_type=request.item_type.value,
                    slug=request.slug,
                    error=str(e),
                )
                results.append(
                    UpdateResult.failed(request, str(e) or "Update failed", from_version)
                )
                continue

            await self._record_local_update(site.id, request, applied)
            results.append(UpdateResult.succeeded(request, applied.version, from_version))

        if unreachable is None:
            try:
                await self._reconcile_site(client, site.id)
            except ReconciliationError as e:
                RECONCILIATION_FAILURES.inc()
                logger.warning("bulk_update_reconciliation_failed", site_id=site.id, error=e.message)
        else:
            logger.info("bulk_update_reconciliation_skipped", site_id=site.id)

        return results

    @staticmethod
    async def _close_client(client: RemoteSiteClient, site_id: int) -> None:
        """Results are already collected; a failing close must not change them."""
        try:
            await client.aclose()
        except Exception as e:
            logger.warning("site_client_close_failed", site_id=site_id, error=str(e))

    async def _local_versions(self, site_id: int) -> Dict[Tuple[ItemType, str], str]:
        """Versions recorded locally before any update runs, keyed by (type, slug)."""
        versions: Dict[Tuple[ItemType, str], str] = {}
        try:
            for item_type in (ItemType.PLUGIN, ItemType.THEME):
                for row in await self.store.list_inventory(site_id, item_type):
                    if row.version:
                        versions[(item_type, row.slug)] = row.version
        except Exception as e:
            logger.warning("bulk_update_local_versions_unavailable", site_id=site_id, error=str(e))
        return versions

    async def _apply_one(self, client: RemoteSiteClient, request: UpdateRequest) -> AppliedUpdate:
        if request.item_type == ItemType.PLUGIN:
            return await with_rate_limit(
                client.apply_plugin_update, request.slug, limiter=self.rate_limiter
            )
        return await with_rate_limit(
            client.apply_theme_update, request.slug, limiter=self.rate_limiter
        )

    async def _record_local_update(
        self, site_id: int, request: UpdateRequest, applied: AppliedUpdate
    ) -> None:
        """
        Mirror a successful remote update locally. A failure here leaves the
        row for reconciliation to correct; the remote update still succeeded.
        """
        try:
            await self.store.update_inventory_item(
                site_id,
                request.item_type,
                request.slug,
                version=applied.version,
                update_available=False,
                new_version=None,
            )
        except Exception as e:
            logger.warning(
                "bulk_update_local_record_failed",
                site_id=site_id,
                slug=request.slug,
                error=str(e),
            )

    async def _reconcile_site(self, client: RemoteSiteClient, site_id: int) -> None:
        """Overwrite local inventory fields with what the site now reports."""
        try:
            plugins, themes = await asyncio.gather(
                with_rate_limit(client.list_plugins, limiter=self.rate_limiter),
                with_rate_limit(client.list_themes, limiter=self.rate_limiter),
            )
            for item_type, items in ((ItemType.PLUGIN, plugins), (ItemType.THEME, themes)):
                for item in items:
                    await self.store.update_inventory_item(
                        site_id,
                        item_type,
                        item.slug,
                        version=item.version,
                        update_available=item.update_available,
                        new_version=item.update_version,
                        is_active=item.is_active,
                    )
            await self.store.mark_site_synced(site_id, datetime.now(timezone.utc))
        except Exception as e:
            raise ReconciliationError(f"Re-sync failed: {e}", details={"site_id": site_id}) from e

        logger.info(
            "bulk_update_reconciled",
            site_id=site_id,
            plugins=len(plugins),
            themes=len(themes),
        )

    async def _persist_log(
        self, results: List[UpdateResult], unknown_site_ids: Set[int]
    ) -> None:
        """Append one log row per result. Rows need an existing site to reference."""
        completed_at = datetime.now(timezone.utc)
        for result in results:
            if result.site_id in unknown_site_ids:
                continue
            try:
                await self.store.append_update_log(UpdateLogEntry.from_result(result, completed_at))
            except Exception as e:
                logger.error(
                    "update_log_append_failed",
                    site_id=result.site_id,
                    slug=result.slug,
                    error=str(e),
                )
