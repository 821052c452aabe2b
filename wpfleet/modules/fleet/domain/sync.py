"""
Fleet Sync Engine

Refreshes health and plugin/theme inventory for every managed site.
All sites run concurrently; each site's outcome is captured in a
SiteSyncResult so one failing site never affects another.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from wpfleet.models.site import Site
from wpfleet.modules.fleet.domain.clients import SiteClientFactory, build_site_client
from wpfleet.modules.fleet.domain.store import InventoryStore
from wpfleet.modules.fleet.domain.types import (
    FleetSyncSummary,
    ItemType,
    SiteStatus,
    SiteSyncResult,
    SyncOutcome,
)
from wpfleet.shared.adapters.base import RemoteSiteClient, SiteHealthCheck
from wpfleet.shared.adapters.rate_limiter import RateLimiter, with_rate_limit
from wpfleet.shared.core.exceptions import CredentialError, RemoteTransportError
from wpfleet.shared.core.ops_metrics import FLEET_SYNC_DURATION, FLEET_SYNC_SITE_OUTCOMES

logger = structlog.get_logger()


class FleetSyncEngine:
    def __init__(
        self,
        store: InventoryStore,
        client_factory: SiteClientFactory = build_site_client,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.rate_limiter = rate_limiter

    async def sync_all(self) -> FleetSyncSummary:
        """Sync every non-archived site. Never raises."""
        try:
            sites = await self.store.list_sites()
        except Exception as e:
            logger.error("fleet_sync_site_listing_failed", error=str(e))
            return FleetSyncSummary()
        return await self.sync_sites(sites)

    async def sync_sites(self, sites: Sequence[Site]) -> FleetSyncSummary:
        """Sync the given sites concurrently and summarize their outcomes."""
        start_time = time.perf_counter()
        logger.info("fleet_sync_starting", site_count=len(sites))

        results = list(
            await asyncio.gather(*(self._sync_site_settled(site) for site in sites))
        )
        summary = FleetSyncSummary.from_results(results)

        duration = time.perf_counter() - start_time
        FLEET_SYNC_DURATION.observe(duration)
        logger.info(
            "fleet_sync_completed",
            total=summary.total,
            synced=summary.synced,
            offline=summary.offline,
            failed=summary.failed,
            seconds=round(duration, 2),
        )
        return summary

    async def _sync_site_settled(self, site: Site) -> SiteSyncResult:
        """Run one site's sync, capturing any failure as that site's outcome."""
        try:
            result = await self._sync_site(site)
        except Exception as e:
            logger.error("site_sync_failed", site_id=site.id, error=str(e))
            result = SiteSyncResult(site_id=site.id, outcome=SyncOutcome.FAILED, error=str(e))
        FLEET_SYNC_SITE_OUTCOMES.labels(outcome=result.outcome.value).inc()
        return result

    async def _sync_site(self, site: Site) -> SiteSyncResult:
        try:
            client = self.client_factory(site)
        except CredentialError as e:
            logger.warning("site_sync_credentials_unusable", site_id=site.id, error=e.message)
            return SiteSyncResult(site_id=site.id, outcome=SyncOutcome.FAILED, error=e.message)

        async with client:
            health = await self._check_health(client, site)
            checked_at = datetime.now(timezone.utc)
            status = SiteStatus.ONLINE if health.online else SiteStatus.OFFLINE
            await self.store.update_site_status(site.id, status, checked_at)

            if not health.online:
                # Last known inventory stays in place.
                logger.info("site_offline_inventory_kept", site_id=site.id)
                return SiteSyncResult(site_id=site.id, outcome=SyncOutcome.OFFLINE)

            errors = await self._sync_inventory(client, site)

        if errors:
            return SiteSyncResult(
                site_id=site.id, outcome=SyncOutcome.FAILED, error="; ".join(errors)
            )

        await self.store.mark_site_synced(site.id, checked_at)
        return SiteSyncResult(site_id=site.id, outcome=SyncOutcome.SYNCED)

    async def _check_health(self, client: RemoteSiteClient, site: Site) -> SiteHealthCheck:
        try:
            return await with_rate_limit(client.check_health, limiter=self.rate_limiter)
        except RemoteTransportError as e:
            logger.info("site_health_check_failed", site_id=site.id, error=e.message)
            return SiteHealthCheck(online=False)

    async def _sync_inventory(self, client: RemoteSiteClient, site: Site) -> list[str]:
        """
        Fetch plugins and themes concurrently and replace each list that
        arrived. Returns one error string per list that could not be synced.
        """
        fetched = await asyncio.gather(
            with_rate_limit(client.list_plugins, limiter=self.rate_limiter),
            with_rate_limit(client.list_themes, limiter=self.rate_limiter),
            return_exceptions=True,
        )

        errors: list[str] = []
        for item_type, outcome in zip((ItemType.PLUGIN, ItemType.THEME), fetched):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(
                    "site_inventory_fetch_failed",
                    site_id=site.id,
                    item_type=item_type.value,
                    error=str(outcome),
                )
                errors.append(f"{item_type.value}s: {outcome}")
                continue

            await self.store.replace_inventory(site.id, item_type, outcome)

        return errors
