"""CRUD operations for PermissionGrant rows.

Grants are append-only.  Duplicate ids surface as ``IntegrityError`` from
the primary key, which the store turns into an idempotent hit or a
``GrantConflictError``.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from delegex.db.models import PermissionGrant


async def insert_grant(session: AsyncSession, grant: PermissionGrant) -> PermissionGrant:
    """Add *grant* and flush so constraint violations surface immediately."""
    session.add(grant)
    await session.flush()
    return grant


async def get_grant(session: AsyncSession, grant_id: str) -> PermissionGrant | None:
    stmt = select(PermissionGrant).where(PermissionGrant.id == grant_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_grants_for_wallet(session: AsyncSession, wallet_address: str) -> list[PermissionGrant]:
    """Every grant ever stored for *wallet_address*, most recently granted first."""
    stmt = (
        select(PermissionGrant)
        .where(PermissionGrant.wallet_address_norm == wallet_address.lower())
        .order_by(PermissionGrant.granted_at.desc(), PermissionGrant.id.desc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
