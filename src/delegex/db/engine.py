"""Async engine factory for the record store.

``DELEGEX_DATABASE_URL`` may name **SQLite** (``aiosqlite``) or
**PostgreSQL** (``asyncpg``); the driver is filled in when the URL omits it.
The engine is owned by the FastAPI app (``app.state.engine``); there is no
module-level singleton.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import create_async_engine as _create_async_engine

logger = logging.getLogger(__name__)

_POSTGRES_PREFIXES = ("postgres://", "postgresql://")


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _postgres(url: str) -> tuple[str, dict[str, Any]]:
    scheme, _, rest = url.partition("://")
    if "+" not in scheme:
        url = f"postgresql+asyncpg://{rest}"
    options = {
        "pool_size": _env_int("DELEGEX_DB_POOL_SIZE", 5),
        "max_overflow": _env_int("DELEGEX_DB_MAX_OVERFLOW", 10),
        "pool_timeout": _env_int("DELEGEX_DB_POOL_TIMEOUT", 30),
        "pool_recycle": _env_int("DELEGEX_DB_POOL_RECYCLE", 1800),
        "pool_pre_ping": True,
    }
    return url, options


def _sqlite(url: str) -> tuple[str, dict[str, Any]]:
    scheme, _, rest = url.partition("://")
    if scheme == "sqlite":
        url = f"sqlite+aiosqlite://{rest}"
    # Busy timeout: concurrent store writes queue on the file lock
    options = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return url, options


def create_async_engine_from_url(url: str, **kwargs: Any) -> AsyncEngine:
    """Create an ``AsyncEngine`` for *url*.

    Pool sizing for PostgreSQL comes from ``DELEGEX_DB_POOL_SIZE``,
    ``DELEGEX_DB_MAX_OVERFLOW``, ``DELEGEX_DB_POOL_TIMEOUT`` and
    ``DELEGEX_DB_POOL_RECYCLE``.  Keyword arguments override the defaults.

    Raises ``ValueError`` for any other scheme.
    """
    if url.startswith(_POSTGRES_PREFIXES) or url.startswith("postgresql+"):
        url, options = _postgres(url)
        backend = "postgresql"
    elif url.startswith("sqlite"):
        url, options = _sqlite(url)
        backend = "sqlite"
    else:
        raise ValueError(f"Unsupported database URL scheme: {url}")

    options["echo"] = False
    options.update(kwargs)
    logger.info("Creating %s record store engine", backend)
    return _create_async_engine(url, **options)
