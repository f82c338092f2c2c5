"""Pydantic request/response models for the delegex REST API.

Field names are snake_case in Python and camelCase on the wire
(``walletAddress``, ``backendKeyPublicId``, ...); both spellings are
accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from delegex.protocol.types import SpendPeriod


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Identity verification
# ---------------------------------------------------------------------------


class ChallengeRequest(CamelModel):
    identity: str
    handle: str


class ChallengeResponse(CamelModel):
    message: str
    challenge_hash: str
    expires_at: int


class VerifySignatureRequest(CamelModel):
    address: str
    signature: str
    message: str
    identity: str
    handle: str


class VerifySignatureResponse(CamelModel):
    success: bool
    wallet_address: str
    verified_at: datetime


class VerifyStatusResponse(CamelModel):
    linked: bool
    wallet_address: str | None = None
    handle: str | None = None
    verified_at: datetime | None = None


class RevokeRequest(CamelModel):
    identity: str


class RevokeResponse(CamelModel):
    success: bool


class LinkRecord(CamelModel):
    wallet_address: str
    handle: str
    verified_at: datetime
    active: bool
    revoked_at: datetime | None = None
    challenge_hash: str


class LinkHistoryResponse(CamelModel):
    identity: str
    links: list[LinkRecord]


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class SpendLimit(CamelModel):
    token: str
    limit: str
    period: SpendPeriod


class PermissionScope(CamelModel):
    allowed_targets: list[str] = Field(min_length=1)
    spend_limits: list[SpendLimit] = Field(default_factory=list)


class PermissionSyncRequest(CamelModel):
    grant_id: str | None = None
    wallet_address: str
    backend_key_public_id: str
    backend_key_type: str = "p256"
    expiry: int
    scope: PermissionScope
    identity: str | None = None
    handle: str | None = None


class PermissionSyncResponse(CamelModel):
    success: bool
    grant_id: str
    created: bool


class WalletPermissionsResponse(CamelModel):
    wallet_address: str
    total_grants: int
    active_grants: int
    has_backend_grant: bool


class PermissionConfigResponse(CamelModel):
    backend_key_public_id: str
    backend_key_type: str
    chain_id: int


class ResolveRequest(CamelModel):
    wallet_address: str
    targets: list[str] = Field(min_length=1)


class GrantRecord(CamelModel):
    grant_id: str
    wallet_address: str
    backend_key_public_id: str
    backend_key_type: str
    expiry: int
    allowed_targets: list[str]
    spend_limits: list[dict[str, Any]]
    granted_at: datetime
    identity: str | None = None
    handle: str | None = None


class UserResponse(CamelModel):
    identity: str
    handle: str
    wallet_address: str
    verified_at: datetime
    total_grants: int
    active_grants: int
    has_backend_grant: bool


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class CallModel(CamelModel):
    target: str
    calldata: str = "0x"
    value: int = Field(default=0, ge=0)


class ExecuteRequest(CamelModel):
    """Either raw ``calls`` or a builder ``action`` with ``params``."""

    wallet_address: str | None = None
    identity: str | None = None
    calls: list[CallModel] | None = None
    action: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class ExecuteResponse(CamelModel):
    success: bool
    relay_batch_id: str | None = None
    transaction_hashes: list[str] = Field(default_factory=list)
    error_kind: str | None = None
    error_detail: str | None = None
    grant_id: str | None = None


class BatchStatusResponse(CamelModel):
    batch_id: str
    status: int | str | None = None
    pending: bool
    confirmed: bool
    transaction_hashes: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
    relay: str
