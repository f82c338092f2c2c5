"""Record stores: the only write path into the verified-link and grant tables.

Each store owns a session factory and opens one session (one transaction)
per operation, so methods can be retried as a whole by ``db_retry`` and can
be called from the executor without an HTTP request in scope.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delegex.db.crud import grants as grant_crud
from delegex.db.crud import links as link_crud
from delegex.db.models import PermissionGrant, VerifiedLink
from delegex.db.retry import db_retry
from delegex.protocol.errors import GrantConflictError

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Lazily created ``asyncio.Lock`` per key, dropped when no longer held."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class LinkStore:
    """Durable identity -> wallet links with an append-only history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory
        self._locks = KeyedLocks()

    @db_retry()
    async def supersede(
        self,
        *,
        identity: str,
        handle: str,
        wallet_address: str,
        signature: str,
        challenge_hash: str,
    ) -> VerifiedLink:
        """Deactivate any active link for *identity* and insert a new active one.

        Both steps share one transaction and run under a per-identity lock, so
        concurrent verifications of one identity cannot both end up active.
        """
        async with self._locks.hold(identity):
            async with self._factory() as session:
                async with session.begin():
                    replaced = await link_crud.deactivate_links(session, identity)
                    link = await link_crud.insert_link(
                        session,
                        identity=identity,
                        handle=handle,
                        wallet_address=wallet_address,
                        signature=signature,
                        challenge_hash=challenge_hash,
                    )
        if replaced:
            logger.info("Superseded %d active link(s) for identity %s", replaced, identity)
        return link

    @db_retry()
    async def revoke(self, identity: str) -> bool:
        """Mark the active link for *identity* revoked.  History is kept."""
        async with self._locks.hold(identity):
            async with self._factory() as session:
                async with session.begin():
                    count = await link_crud.deactivate_links(session, identity, revoked=True)
        return count > 0

    async def get_active(self, identity: str) -> VerifiedLink | None:
        async with self._factory() as session:
            return await link_crud.get_active_link(session, identity)

    async def history(self, identity: str) -> list[VerifiedLink]:
        async with self._factory() as session:
            return await link_crud.list_links(session, identity)

    async def active_for_wallet(self, wallet_address: str) -> list[VerifiedLink]:
        async with self._factory() as session:
            return await link_crud.list_active_links_for_wallet(session, wallet_address)


def _same_grant(a: PermissionGrant, b: PermissionGrant) -> bool:
    return (
        a.wallet_address_norm == b.wallet_address_norm
        and a.backend_key_public_id.lower() == b.backend_key_public_id.lower()
        and a.backend_key_type == b.backend_key_type
        and a.expiry == b.expiry
        and a.allowed_target_set == b.allowed_target_set
        and list(a.spend_limits) == list(b.spend_limits)
    )


class GrantStore:
    """Append-only log of permission grants, keyed by grant id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    @db_retry()
    async def append(self, grant: PermissionGrant) -> tuple[PermissionGrant, bool]:
        """Insert *grant*.

        Returns ``(grant, created)``.  Re-appending an id whose stored content
        matches is a no-op returning the stored row (``created=False``); a
        different payload under an existing id raises ``GrantConflictError``.
        """
        try:
            async with self._factory() as session:
                async with session.begin():
                    await grant_crud.insert_grant(session, grant)
            return grant, True
        except IntegrityError:
            async with self._factory() as session:
                existing = await grant_crud.get_grant(session, grant.id)
            if existing is None:
                raise
            if not _same_grant(existing, grant):
                raise GrantConflictError(
                    f"Grant {grant.id} already exists with different content"
                ) from None
            logger.info("Grant %s already stored; sync is a no-op", grant.id)
            return existing, False

    async def get(self, grant_id: str) -> PermissionGrant | None:
        async with self._factory() as session:
            return await grant_crud.get_grant(session, grant_id)

    async def for_wallet(self, wallet_address: str) -> list[PermissionGrant]:
        """Fresh read of every grant for a wallet, most recently granted first."""
        async with self._factory() as session:
            return await grant_crud.list_grants_for_wallet(session, wallet_address)
