"""Delegex record store package.

Re-exports the SQLModel tables, the async engine/session helpers and the
stores for convenient top-level imports::

    from delegex.db import GrantStore, LinkStore, create_async_engine_from_url
"""

from delegex.db.engine import create_async_engine_from_url
from delegex.db.models import PermissionGrant, VerifiedLink
from delegex.db.retry import db_retry, is_transient_error
from delegex.db.session import async_session_factory, create_tables, get_session
from delegex.db.stores import GrantStore, KeyedLocks, LinkStore

__all__ = [
    "create_async_engine_from_url",
    "db_retry",
    "is_transient_error",
    "async_session_factory",
    "create_tables",
    "get_session",
    "PermissionGrant",
    "VerifiedLink",
    "GrantStore",
    "KeyedLocks",
    "LinkStore",
]
