"""CRUD operations for VerifiedLink rows.

Every function takes ``session: AsyncSession`` as its first parameter and
leaves transaction control to the caller (see ``LinkStore``).  Rows are
never deleted: superseding and revoking only flip ``active``.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from delegex.db.models import VerifiedLink
from delegex.protocol.types import utc_now


async def deactivate_links(session: AsyncSession, identity: str, *, revoked: bool = False) -> int:
    """Flip every active link for *identity* to inactive.

    When *revoked* is set the rows also get ``revoked_at``.  Returns the
    number of rows changed.
    """
    values: dict = {"active": False}
    if revoked:
        values["revoked_at"] = utc_now()
    stmt = (
        update(VerifiedLink)
        .where(VerifiedLink.identity == identity, VerifiedLink.active.is_(True))  # type: ignore[union-attr]
        .values(**values)
    )
    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[return-value]


async def insert_link(
    session: AsyncSession,
    *,
    identity: str,
    handle: str,
    wallet_address: str,
    signature: str,
    challenge_hash: str,
) -> VerifiedLink:
    """Insert a new active link and flush it so the id is assigned."""
    link = VerifiedLink(
        identity=identity,
        handle=handle,
        wallet_address=wallet_address,
        wallet_address_norm=wallet_address.lower(),
        signature=signature,
        challenge_hash=challenge_hash,
        active=True,
    )
    session.add(link)
    await session.flush()
    return link


async def get_active_link(session: AsyncSession, identity: str) -> VerifiedLink | None:
    """The single active link for *identity*, if any."""
    stmt = select(VerifiedLink).where(
        VerifiedLink.identity == identity, VerifiedLink.active.is_(True)  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_links(session: AsyncSession, identity: str) -> list[VerifiedLink]:
    """Full link history for *identity*, newest first."""
    stmt = (
        select(VerifiedLink)
        .where(VerifiedLink.identity == identity)
        .order_by(VerifiedLink.verified_at.desc(), VerifiedLink.id.desc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_active_links_for_wallet(session: AsyncSession, wallet_address: str) -> list[VerifiedLink]:
    """Active links pointing at *wallet_address* (case-insensitive)."""
    stmt = select(VerifiedLink).where(
        VerifiedLink.wallet_address_norm == wallet_address.lower(),
        VerifiedLink.active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
