"""Async engine, session scopes and schema bootstrap."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from speaking_feedback.config.settings import settings
from speaking_feedback.models import Base

logger = logging.getLogger(__name__)


def engine_options(url: str) -> dict[str, Any]:
    """Pooling options for ``url``.

    In-memory SQLite keeps a single shared connection; file SQLite and
    serverless Postgres run without a pool.
    """

    parsed = make_url(url)
    options: dict[str, Any] = {"echo": settings.database.echo}

    if parsed.get_backend_name() == "sqlite":
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        else:
            options["poolclass"] = NullPool
        return options

    options["pool_pre_ping"] = True
    if settings.database.serverless:
        options["poolclass"] = NullPool
    return options


engine: AsyncEngine = create_async_engine(
    settings.database.url, **engine_options(settings.database.url)
)

SessionFactory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with SessionFactory() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session dependency."""

    async with session_scope() as session:
        yield session


async def init_models() -> None:
    """Create the feed, speech and feedback tables when missing."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Feedback schema ready (%d tables) on %s",
        len(Base.metadata.tables),
        engine.url.render_as_string(hide_password=True),
    )


async def check_connection() -> bool:
    """Return whether the database answers a trivial query."""

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed: %s", exc)
        return False
    return True


async def dispose_engine() -> None:
    await engine.dispose()
