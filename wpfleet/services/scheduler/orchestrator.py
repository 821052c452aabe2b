import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from prometheus_client import Histogram

from wpfleet.modules.fleet.domain.health import build_health_view, calculate_health_score
from wpfleet.modules.fleet.domain.prioritizer import prioritize_updates
from wpfleet.modules.fleet.domain.scheduling import build_notifications, sites_due_for_sync
from wpfleet.modules.fleet.domain.store import InventoryStore
from wpfleet.modules.fleet.domain.sync import FleetSyncEngine
from wpfleet.modules.fleet.domain.types import Priority, PrioritizedUpdate, SiteNotificationView
from wpfleet.shared.core.config import get_settings
from wpfleet.shared.core.notifications import NotificationDispatcher
from wpfleet.shared.core.ops_metrics import SCHEDULER_JOB_RUNS

logger = structlog.get_logger()

SYNC_JOB_ID = "fleet_sync"

SCHEDULER_JOB_DURATION = Histogram(
    "wpfleet_scheduler_job_duration_seconds",
    "Duration of scheduled jobs in seconds",
    ["job_name"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)


class FleetScheduler:
    """Runs the periodic fleet sync and the notifications that follow it."""

    def __init__(
        self,
        store: InventoryStore,
        sync_engine: Optional[FleetSyncEngine] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        interval_minutes: Optional[int] = None,
    ):
        settings = get_settings()
        self.scheduler = AsyncIOScheduler()
        self.store = store
        self.sync_engine = sync_engine or FleetSyncEngine(store)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        self.updates_threshold = settings.NOTIFY_UPDATES_THRESHOLD
        self.ssl_window_days = settings.NOTIFY_SSL_WINDOW_DAYS
        self._last_run_success: bool | None = None
        self._last_run_time: str | None = None

    async def scheduled_sync_job(self) -> None:
        """Sync the sites that are due, then notify about sites with issues."""
        job_id = str(uuid.uuid4())
        job_name = SYNC_JOB_ID
        start_time = time.time()

        with structlog.contextvars.bound_contextvars(correlation_id=job_id, job_type="fleet_sync"):
            try:
                sites = await self.store.list_sites()
                due = sites_due_for_sync(sites, self.interval_minutes)
                if due:
                    await self.sync_engine.sync_sites(due)
                else:
                    logger.info("scheduler_no_sites_due", sites=len(sites))

                views = await self._notification_views()
                notifications = build_notifications(
                    views,
                    updates_threshold=self.updates_threshold,
                    ssl_window_days=self.ssl_window_days,
                )
                await self.dispatcher.dispatch(notifications)

                backlog = await self.pending_backlog()

                logger.info(
                    "scheduler_sync_job_completed",
                    due=len(due),
                    notifications=len(notifications),
                    pending_updates=len(backlog),
                )
                SCHEDULER_JOB_RUNS.labels(job_name=job_name, status="success").inc()
                self._last_run_success = True
            except Exception as e:
                logger.error("scheduler_sync_job_failed", job=job_name, error=str(e))
                SCHEDULER_JOB_RUNS.labels(job_name=job_name, status="failure").inc()
                self._last_run_success = False
            finally:
                self._last_run_time = datetime.now(timezone.utc).isoformat()
                SCHEDULER_JOB_DURATION.labels(job_name=job_name).observe(time.time() - start_time)

    async def pending_backlog(self) -> list[PrioritizedUpdate]:
        """Fleet-wide pending updates, most urgent first."""
        backlog = prioritize_updates(await self.store.list_pending_updates())
        if backlog:
            by_priority = {p.value: 0 for p in Priority}
            for item in backlog:
                by_priority[item.priority.value] += 1
            logger.info("scheduler_pending_updates", total=len(backlog), **by_priority)
        return backlog

    async def _notification_views(self) -> list[SiteNotificationView]:
        sites = await self.store.list_sites()
        counts = await self.store.count_pending_updates(site.id for site in sites)

        views = []
        for site in sites:
            plugin_updates, theme_updates = counts.get(site.id, (0, 0))
            health = build_health_view(site, plugin_updates, theme_updates)
            logger.debug(
                "site_health_scored",
                site_id=site.id,
                score=calculate_health_score(health),
            )
            views.append(
                SiteNotificationView(
                    id=site.id,
                    name=site.name,
                    status=health.status,
                    plugin_updates=plugin_updates,
                    theme_updates=theme_updates,
                    ssl_expiry=site.ssl_expiry,
                )
            )
        return views

    def start(self):
        """Registers the interval sync job and starts APScheduler."""
        self.scheduler.add_job(
            self.scheduled_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes, timezone="UTC"),
            id=SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("scheduler_started", interval_minutes=self.interval_minutes)

    def stop(self):
        self.scheduler.shutdown(wait=True)

    def get_status(self) -> dict:
        return {
            "running": self.scheduler.running,
            "last_run_success": self._last_run_success,
            "last_run_time": self._last_run_time,
            "jobs": [job.id for job in self.scheduler.get_jobs()],
        }
