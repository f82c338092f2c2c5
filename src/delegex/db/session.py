"""AsyncSession factory, table bootstrap and the FastAPI session dependency.

The session factory lives on ``app.state.session_factory``; routes that need
a raw session use ``Depends(get_session)``::

    @router.get("/health")
    async def health(session: AsyncSession = Depends(get_session)):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from starlette.requests import Request

import delegex.db.models  # noqa: F401 -- registers tables with SQLModel.metadata
from delegex.db.retry import is_transient_error

logger = logging.getLogger(__name__)


def async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to *engine*.

    Sessions use ``expire_on_commit=False`` so rows stay readable after commit.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a per-request ``AsyncSession``."""
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise RuntimeError("Session factory not initialized (app lifespan not started)")
    try:
        async with factory() as session:
            yield session
    except OperationalError as exc:
        if is_transient_error(exc):
            logger.warning("Transient DB error during session: %s", exc)
        raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create every delegex table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Record store tables ensured")
