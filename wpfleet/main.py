import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog

from wpfleet.models import Plugin, Site, Theme, UpdateLog  # noqa: F401 - register tables
from wpfleet.modules.fleet.domain.store import SQLAlchemyInventoryStore
from wpfleet.modules.fleet.domain.sync import FleetSyncEngine
from wpfleet.services.scheduler import FleetScheduler
from wpfleet.shared.adapters.rate_limiter import RateLimiter
from wpfleet.shared.core.config import reload_settings_from_environment
from wpfleet.shared.core.logging import setup_logging
from wpfleet.shared.db.base import Base
from wpfleet.shared.db.session import create_engine_and_session_maker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan() -> AsyncGenerator[FleetScheduler, None]:
    settings = reload_settings_from_environment()
    logger.info("worker_starting", app_name=settings.APP_NAME, version=settings.VERSION)

    engine, session_maker = create_engine_and_session_maker()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = SQLAlchemyInventoryStore(session_maker)
    rate_limiter = None
    if settings.REMOTE_RATE_LIMIT_PER_SECOND:
        rate_limiter = RateLimiter(settings.REMOTE_RATE_LIMIT_PER_SECOND)

    scheduler = FleetScheduler(
        store,
        sync_engine=FleetSyncEngine(store, rate_limiter=rate_limiter),
    )
    if settings.TESTING:
        logger.info("scheduler_skipped_in_testing")
    else:
        scheduler.start()

    try:
        yield scheduler
    finally:
        logger.info("worker_shutting_down")
        if scheduler.scheduler.running:
            scheduler.stop()
        await engine.dispose()
        logger.info("db_engine_disposed")


async def run_worker() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with lifespan() as scheduler:
        # First sync runs immediately instead of one interval after startup.
        await scheduler.scheduled_sync_job()
        await stop.wait()


def main() -> None:
    setup_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
