import time
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from wpfleet.shared.core.config import get_settings

logger = structlog.get_logger()

SLOW_QUERY_THRESHOLD_SECONDS = 0.2


def _attach_slow_query_logging(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        total = time.perf_counter() - conn.info["query_start_time"].pop(-1)
        if total > SLOW_QUERY_THRESHOLD_SECONDS:
            logger.warning(
                "slow_query_detected",
                duration_seconds=round(total, 3),
                statement=statement[:200] + "..." if len(statement) > 200 else statement,
            )


def create_engine_and_session_maker(
    database_url: str | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build the async engine and its session factory.

    expire_on_commit=False keeps ORM objects usable after commit, which the
    engines rely on when they hand Site rows between short-lived sessions.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL

    engine_args: dict[str, Any] = {"echo": settings.DB_ECHO}
    if settings.TESTING:
        engine_args["poolclass"] = NullPool
    elif not url.startswith("sqlite"):
        engine_args["pool_pre_ping"] = True
        engine_args["pool_recycle"] = 300

    engine = create_async_engine(url, **engine_args)
    _attach_slow_query_logging(engine)

    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.info("database_engine_created", dialect=engine.dialect.name)
    return engine, session_maker
