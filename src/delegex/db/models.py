"""SQLModel table definitions for the delegex record store.

Both tables are append-only audit logs: verified links are superseded by
flipping ``active`` and permission grants are never updated after insert.

Usage::

    from delegex.db.models import PermissionGrant, VerifiedLink
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import JSON, DateTime, Index, text
from sqlmodel import Field, SQLModel

from delegex.protocol.address import normalize_address
from delegex.protocol.types import utc_now


class VerifiedLink(SQLModel, table=True):
    """Attested association between a messaging identity and a wallet."""

    __tablename__ = "verified_links"
    __table_args__ = (
        # At most one active link per identity, enforced by the store itself
        Index(
            "uq_verified_links_active_identity",
            "identity",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    identity: str = Field(index=True)
    handle: str
    wallet_address: str
    wallet_address_norm: str = Field(index=True)
    verified_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    signature: str
    challenge_hash: str
    active: bool = Field(default=True)
    revoked_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class PermissionGrant(SQLModel, table=True):
    """Scoped, expiring authorization for a backend key on one wallet."""

    __tablename__ = "permission_grants"

    id: str = Field(primary_key=True)
    wallet_address: str
    wallet_address_norm: str = Field(index=True)
    backend_key_public_id: str = Field(index=True)
    backend_key_type: str = Field(default="p256")
    expiry: int
    allowed_targets: list = Field(default_factory=list, sa_type=JSON)
    spend_limits: list = Field(default_factory=list, sa_type=JSON)
    granted_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    identity: str | None = None
    handle: str | None = None

    @property
    def allowed_target_set(self) -> frozenset[str]:
        return frozenset(normalize_address(t) for t in self.allowed_targets)

    def is_expired(self, now: int) -> bool:
        """A grant is usable only while ``expiry > now``."""
        return self.expiry <= now

    def covers(self, targets: Iterable[str]) -> bool:
        """True when every target (already normalized) is in scope."""
        return frozenset(targets) <= self.allowed_target_set

    def names_key(self, public_id: str) -> bool:
        return self.backend_key_public_id.lower() == public_id.lower()
