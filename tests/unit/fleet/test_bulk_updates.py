"""
Tests for wpfleet/modules/fleet/domain/updates.py - BulkUpdateOrchestrator
"""
import asyncio
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

from wpfleet.models import UpdateLog
from wpfleet.modules.fleet.domain.types import ItemType, UpdateRequest, UpdateStatus
from wpfleet.modules.fleet.domain.updates import CANCELLED_MESSAGE, BulkUpdateOrchestrator
from wpfleet.shared.core.exceptions import (
    CredentialError,
    RemoteConnectionError,
    RemoteTransportError,
    ValidationError,
)


def _req(site_id: int, slug: str, item_type: str = "plugin") -> dict:
    return {"site_id": site_id, "item_type": item_type, "slug": slug}


def _orchestrator(store, clients, **kwargs):
    return BulkUpdateOrchestrator(store, client_factory=lambda site: clients[site.id], **kwargs)


async def _log_count(session_maker) -> int:
    async with session_maker() as db:
        return (await db.execute(select(func.count(UpdateLog.id)))).scalar_one()


class TestValidation:
    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, store):
        factory = MagicMock()
        with pytest.raises(ValidationError, match="No updates provided"):
            await BulkUpdateOrchestrator(store, client_factory=factory).apply_updates([])
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_iterable_is_rejected(self, store):
        factory = MagicMock()
        with pytest.raises(ValidationError, match="No updates provided"):
            await BulkUpdateOrchestrator(store, client_factory=factory).apply_updates(
                r for r in []
            )
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_generator_input_is_applied(self, store, create_site, fake_client_cls):
        site = await create_site()

        response = await _orchestrator(store, {site.id: fake_client_cls()}).apply_updates(
            _req(site.id, slug) for slug in ("akismet", "jetpack")
        )

        assert response.summary.successful == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad",
        [
            {"site_id": 0, "item_type": "plugin", "slug": "akismet"},
            {"site_id": 1, "item_type": "mu-plugin", "slug": "akismet"},
            {"site_id": 1, "item_type": "theme", "slug": ""},
            {"site_id": 1, "item_type": "theme"},
        ],
    )
    async def test_malformed_request_is_rejected_before_any_io(self, store, bad):
        factory = MagicMock()
        orchestrator = BulkUpdateOrchestrator(store, client_factory=factory)

        with pytest.raises(ValidationError) as exc:
            await orchestrator.apply_updates([_req(1, "ok"), bad])

        assert exc.value.details["index"] == 1
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_accepts_update_request_models(self, store, create_site, fake_client_cls):
        site = await create_site()
        request = UpdateRequest(site_id=site.id, item_type=ItemType.THEME, slug="astra")

        response = await _orchestrator(store, {site.id: fake_client_cls()}).apply_updates([request])

        assert response.results[0].status == UpdateStatus.SUCCESS


@pytest.mark.asyncio
async def test_results_match_input_order_and_cardinality(store, create_site, fake_client_cls):
    a = await create_site()
    b = await create_site()
    clients = {
        a.id: fake_client_cls(update_versions={"akismet": "5.3"}),
        b.id: fake_client_cls(),
    }
    requests = [
        _req(a.id, "akismet"),
        _req(b.id, "astra", "theme"),
        _req(a.id, "jetpack"),
        _req(b.id, "woocommerce"),
    ]

    response = await _orchestrator(store, clients).apply_updates(requests)

    assert [(r.site_id, r.item_type.value, r.slug) for r in response.results] == [
        (q["site_id"], q["item_type"], q["slug"]) for q in requests
    ]
    assert response.results[0].new_version == "5.3"
    assert response.summary.total == 4
    assert response.summary.successful == 4
    assert response.summary.failed == 0


@pytest.mark.asyncio
async def test_updates_run_sequentially_per_site_then_reconcile(store, create_site, fake_client_cls):
    site = await create_site()
    client = fake_client_cls()
    requests = [_req(site.id, "b-plugin"), _req(site.id, "a-theme", "theme"), _req(site.id, "c-plugin")]

    await _orchestrator(store, {site.id: client}).apply_updates(requests)

    assert client.calls[:3] == [
        ("apply_plugin_update", "b-plugin"),
        ("apply_theme_update", "a-theme"),
        ("apply_plugin_update", "c-plugin"),
    ]
    assert sorted(client.calls[3:]) == [("list_plugins",), ("list_themes",)]
    assert client.closed is True


@pytest.mark.asyncio
async def test_unknown_site_fails_without_affecting_others(
    store, session_maker, create_site, fake_client_cls
):
    site = await create_site()

    response = await _orchestrator(store, {site.id: fake_client_cls()}).apply_updates(
        [_req(999, "akismet"), _req(site.id, "akismet")]
    )

    missing, present = response.results
    assert missing.status == UpdateStatus.FAILED
    assert missing.message == "Site not found"
    assert present.status == UpdateStatus.SUCCESS
    # Log rows reference existing sites only
    assert await _log_count(session_maker) == 1


@pytest.mark.asyncio
async def test_credential_failure_is_isolated_to_its_site(store, create_site, fake_client_cls):
    locked = await create_site()
    healthy = await create_site()
    healthy_client = fake_client_cls()

    def factory(site):
        if site.id == locked.id:
            raise CredentialError()
        return healthy_client

    response = await BulkUpdateOrchestrator(store, client_factory=factory).apply_updates(
        [_req(locked.id, "akismet"), _req(healthy.id, "akismet"), _req(locked.id, "jetpack")]
    )

    statuses = [(r.site_id, r.status, r.message) for r in response.results]
    assert statuses == [
        (locked.id, UpdateStatus.FAILED, "Unable to decrypt site credentials"),
        (healthy.id, UpdateStatus.SUCCESS, None),
        (locked.id, UpdateStatus.FAILED, "Unable to decrypt site credentials"),
    ]
    assert response.summary.failed == 2


@pytest.mark.asyncio
async def test_item_failure_does_not_stop_the_site_group(store, create_site, fake_client_cls):
    site = await create_site()
    client = fake_client_cls(
        update_errors={"broken": RemoteTransportError("WordPress API error: 500 - Update failed")}
    )

    response = await _orchestrator(store, {site.id: client}).apply_updates(
        [_req(site.id, "broken"), _req(site.id, "akismet")]
    )

    failed, succeeded = response.results
    assert failed.status == UpdateStatus.FAILED
    assert failed.message == "WordPress API error: 500 - Update failed"
    assert succeeded.status == UpdateStatus.SUCCESS
    assert ("list_plugins",) in client.calls


@pytest.mark.asyncio
async def test_unreachable_site_short_circuits_remaining_items(store, create_site, fake_client_cls):
    site = await create_site()
    client = fake_client_cls(
        update_errors={"first": RemoteConnectionError("Connection to site failed: timed out")}
    )

    response = await _orchestrator(store, {site.id: client}).apply_updates(
        [_req(site.id, "first"), _req(site.id, "second"), _req(site.id, "third", "theme")]
    )

    assert all(r.status == UpdateStatus.FAILED for r in response.results)
    assert all(r.message.startswith("Site unreachable:") for r in response.results)
    assert client.applied_slugs() == ["first"]
    assert ("list_plugins",) not in client.calls


@pytest.mark.asyncio
async def test_successful_update_is_recorded_locally_and_reconciled(
    store, create_site, fake_client_cls, make_item
):
    site = await create_site()
    await store.replace_inventory(
        site.id, ItemType.PLUGIN, [make_item("akismet", "5.0", update="5.3"), make_item("jetpack", "12.0", update="13.0")]
    )
    client = fake_client_cls(
        update_versions={"akismet": "5.3"},
        # What the site reports afterwards; jetpack was updated out of band.
        plugins=[make_item("akismet", "5.3"), make_item("jetpack", "13.0", active=False)],
    )

    await _orchestrator(store, {site.id: client}).apply_updates([_req(site.id, "akismet")])

    rows = {r.slug: r for r in await store.list_inventory(site.id, ItemType.PLUGIN)}
    assert (rows["akismet"].version, rows["akismet"].update_available) == ("5.3", False)
    assert (rows["jetpack"].version, rows["jetpack"].update_available, rows["jetpack"].is_active) == (
        "13.0",
        False,
        False,
    )
    (refreshed,) = await store.list_sites()
    assert refreshed.last_synced is not None


@pytest.mark.asyncio
async def test_reconciliation_failure_does_not_fail_updates(store, create_site, fake_client_cls, make_item):
    site = await create_site()
    await store.replace_inventory(site.id, ItemType.PLUGIN, [make_item("akismet", "5.0", update="5.3")])
    client = fake_client_cls(
        update_versions={"akismet": "5.3"},
        plugins_error=RemoteTransportError("WordPress API error: 502"),
    )

    response = await _orchestrator(store, {site.id: client}).apply_updates([_req(site.id, "akismet")])

    assert response.results[0].status == UpdateStatus.SUCCESS
    (row,) = await store.list_inventory(site.id, ItemType.PLUGIN)
    assert (row.version, row.update_available, row.new_version) == ("5.3", False, None)
    (refreshed,) = await store.list_sites()
    assert refreshed.last_synced is None


@pytest.mark.asyncio
async def test_every_result_is_logged(store, session_maker, create_site, fake_client_cls):
    site = await create_site()
    client = fake_client_cls(update_errors={"broken": RemoteTransportError("boom")})

    await _orchestrator(store, {site.id: client}).apply_updates(
        [_req(site.id, "akismet"), _req(site.id, "broken")]
    )

    async with session_maker() as db:
        rows = (await db.execute(select(UpdateLog).order_by(UpdateLog.id))).scalars().all()
    assert [(r.item_slug, r.status, r.to_version, r.error_message) for r in rows] == [
        ("akismet", "success", "2.0.0", None),
        ("broken", "failed", None, "boom"),
    ]
    assert all(r.completed_at is not None for r in rows)


@pytest.mark.asyncio
async def test_batches_respect_concurrency_limit(store, create_site, fake_client_cls):
    sites = [await create_site() for _ in range(5)]
    tracker = {"active": 0, "peak": 0}

    async def slow_update(slug):
        tracker["active"] += 1
        tracker["peak"] = max(tracker["peak"], tracker["active"])
        await asyncio.sleep(0.01)
        tracker["active"] -= 1

    clients = {s.id: fake_client_cls(before_update=slow_update) for s in sites}

    response = await _orchestrator(store, clients, concurrency_limit=2).apply_updates(
        [_req(s.id, "akismet") for s in sites]
    )

    assert response.summary.successful == 5
    assert tracker["peak"] == 2


@pytest.mark.asyncio
async def test_cancel_event_stops_new_batches(store, create_site, fake_client_cls):
    first = await create_site()
    second = await create_site()
    cancel = asyncio.Event()

    async def cancel_after_first(slug):
        cancel.set()

    clients = {
        first.id: fake_client_cls(before_update=cancel_after_first),
        second.id: fake_client_cls(),
    }

    response = await _orchestrator(store, clients, concurrency_limit=1).apply_updates(
        [_req(first.id, "akismet"), _req(first.id, "jetpack"), _req(second.id, "akismet")],
        cancel_event=cancel,
    )

    # The in-flight group finishes; the next batch never starts.
    assert [r.status for r in response.results] == [
        UpdateStatus.SUCCESS,
        UpdateStatus.SUCCESS,
        UpdateStatus.FAILED,
    ]
    assert response.results[2].message == CANCELLED_MESSAGE
    assert clients[second.id].calls == []


@pytest.mark.asyncio
async def test_expired_deadline_cancels_everything_not_started(store, create_site, fake_client_cls):
    first = await create_site()
    second = await create_site()

    async def slow(slug):
        await asyncio.sleep(0.05)

    clients = {first.id: fake_client_cls(before_update=slow), second.id: fake_client_cls()}

    response = await _orchestrator(store, clients, concurrency_limit=1).apply_updates(
        [_req(first.id, "akismet"), _req(second.id, "akismet")],
        deadline_seconds=0.01,
    )

    assert response.results[0].status == UpdateStatus.SUCCESS
    assert response.results[1].message == CANCELLED_MESSAGE
    assert response.summary.failed == 1


@pytest.mark.parametrize("limit", [0, -1])
def test_concurrency_limit_must_be_positive(limit):
    with pytest.raises(ValueError):
        BulkUpdateOrchestrator(MagicMock(), client_factory=MagicMock(), concurrency_limit=limit)


@pytest.mark.asyncio
async def test_zero_deadline_starts_nothing(store, session_maker, create_site, fake_client_cls):
    site = await create_site()
    client = fake_client_cls()

    response = await _orchestrator(store, {site.id: client}).apply_updates(
        [_req(site.id, "akismet"), _req(site.id, "astra", "theme")],
        deadline_seconds=0,
    )

    assert [r.message for r in response.results] == [CANCELLED_MESSAGE, CANCELLED_MESSAGE]
    assert client.calls == []
    assert await _log_count(session_maker) == 2


@pytest.mark.asyncio
async def test_failing_client_close_keeps_applied_results(store, create_site, fake_client_cls):
    class BrokenCloseClient(fake_client_cls):
        async def aclose(self) -> None:
            raise RuntimeError("socket already closed")

    site = await create_site()
    client = BrokenCloseClient(update_versions={"akismet": "5.3"})

    response = await _orchestrator(store, {site.id: client}).apply_updates([_req(site.id, "akismet")])

    (result,) = response.results
    assert client.applied_slugs() == ["akismet"]
    assert result.status == UpdateStatus.SUCCESS
    assert result.new_version == "5.3"
    assert response.summary.failed == 0


@pytest.mark.asyncio
async def test_log_records_version_before_and_after(
    store, session_maker, create_site, fake_client_cls, make_item
):
    site = await create_site()
    await store.replace_inventory(site.id, ItemType.PLUGIN, [make_item("akismet", "5.0", update="5.3")])
    client = fake_client_cls(
        update_versions={"akismet": "5.3"},
        update_errors={"jetpack": RemoteTransportError("WordPress API error: 500")},
    )

    response = await _orchestrator(store, {site.id: client}).apply_updates(
        [_req(site.id, "akismet"), _req(site.id, "jetpack")]
    )

    assert response.results[0].from_version == "5.0"
    async with session_maker() as db:
        rows = (await db.execute(select(UpdateLog).order_by(UpdateLog.id))).scalars().all()
    assert [(r.item_slug, r.from_version, r.to_version) for r in rows] == [
        ("akismet", "5.0", "5.3"),
        ("jetpack", None, None),
    ]
