"""Permission sync API.

The grant ceremony happens in an external UI; it posts the resulting grant
here.  Grants are append-only: re-posting an identical grant is a no-op,
re-posting a grant id with different content is a 409.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, HTTPException, Request

from delegex.core.resolver import PermissionResolver
from delegex.db.models import PermissionGrant
from delegex.protocol.address import normalize_address, validate_address
from delegex.protocol.types import KeyType, unix_now
from delegex.server.models import (
    GrantRecord,
    PermissionConfigResponse,
    PermissionSyncRequest,
    PermissionSyncResponse,
    ResolveRequest,
    UserResponse,
    WalletPermissionsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["permissions"])


def summarize_grants(grants: list[PermissionGrant], backend_public_id: str, now: int) -> dict:
    live = [g for g in grants if not g.is_expired(now)]
    return {
        "total_grants": len(grants),
        "active_grants": len(live),
        "has_backend_grant": any(g.names_key(backend_public_id) for g in live),
    }


def grant_record(grant: PermissionGrant) -> GrantRecord:
    return GrantRecord(
        grant_id=grant.id,
        wallet_address=grant.wallet_address,
        backend_key_public_id=grant.backend_key_public_id,
        backend_key_type=grant.backend_key_type,
        expiry=grant.expiry,
        allowed_targets=list(grant.allowed_targets),
        spend_limits=list(grant.spend_limits),
        granted_at=grant.granted_at,
        identity=grant.identity,
        handle=grant.handle,
    )


@router.post("/permissions/sync", response_model=PermissionSyncResponse)
async def sync_permission(body: PermissionSyncRequest, request: Request) -> PermissionSyncResponse:
    wallet = validate_address(body.wallet_address)
    targets = [validate_address(t) for t in body.scope.allowed_targets]
    spend_limits = []
    for limit in body.scope.spend_limits:
        spend_limits.append(
            {"token": validate_address(limit.token), "limit": limit.limit, "period": limit.period.value}
        )
    if body.backend_key_type not in {k.value for k in KeyType}:
        raise HTTPException(status_code=400, detail=f"Unsupported key type: {body.backend_key_type}")
    if body.expiry <= unix_now():
        raise HTTPException(status_code=400, detail="Grant is already expired")

    key_manager = request.app.state.key_manager
    if body.backend_key_public_id.lower() != key_manager.get_public_identifier().lower():
        logger.warning(
            "Grant for %s names backend key %s..., which this deployment does not hold",
            wallet,
            body.backend_key_public_id[:18],
        )
    if body.identity:
        link = await request.app.state.link_store.get_active(body.identity)
        if link is not None and link.wallet_address_norm != normalize_address(wallet):
            logger.warning(
                "Grant for %s synced for identity %s, whose verified wallet is %s",
                wallet,
                body.identity,
                link.wallet_address,
            )

    grant = PermissionGrant(
        id=body.grant_id or "0x" + secrets.token_hex(32),
        wallet_address=wallet,
        wallet_address_norm=normalize_address(wallet),
        backend_key_public_id=body.backend_key_public_id,
        backend_key_type=body.backend_key_type,
        expiry=body.expiry,
        allowed_targets=targets,
        spend_limits=spend_limits,
        identity=body.identity,
        handle=body.handle,
    )
    stored, created = await request.app.state.grant_store.append(grant)
    if created:
        logger.info("Stored grant %s for %s (%d targets)", stored.id[:18], wallet, len(targets))
    return PermissionSyncResponse(success=True, grant_id=stored.id, created=created)


@router.get("/permissions/wallet/{wallet_address}", response_model=WalletPermissionsResponse)
async def wallet_permissions(wallet_address: str, request: Request) -> WalletPermissionsResponse:
    wallet = validate_address(wallet_address)
    grants = await request.app.state.grant_store.for_wallet(wallet)
    public_id = request.app.state.key_manager.get_public_identifier()
    return WalletPermissionsResponse(wallet_address=wallet, **summarize_grants(grants, public_id, unix_now()))


@router.get("/permissions/config", response_model=PermissionConfigResponse)
async def permission_config(request: Request) -> PermissionConfigResponse:
    """What the grant-ceremony UI needs to name this deployment's backend key."""
    handle = request.app.state.key_manager.get_signing_key()
    return PermissionConfigResponse(
        backend_key_public_id=handle.public_id,
        backend_key_type=handle.key_type.value,
        chain_id=request.app.state.settings.chain_id,
    )


@router.post("/permissions/resolve", response_model=GrantRecord)
async def resolve_permission(body: ResolveRequest, request: Request) -> GrantRecord:
    """Diagnostics: which grant would authorize these targets right now."""
    resolver: PermissionResolver = request.app.state.resolver
    grant = await resolver.resolve(
        validate_address(body.wallet_address),
        [validate_address(t) for t in body.targets],
        backend_key_public_id=request.app.state.key_manager.get_public_identifier(),
    )
    return grant_record(grant)


@router.get("/users/by-identity/{identity}", response_model=UserResponse)
async def user_by_identity(identity: str, request: Request) -> UserResponse:
    link = await request.app.state.link_store.get_active(identity)
    if link is None:
        raise HTTPException(status_code=404, detail=f"No verified wallet for identity {identity}")
    grants = await request.app.state.grant_store.for_wallet(link.wallet_address)
    public_id = request.app.state.key_manager.get_public_identifier()
    return UserResponse(
        identity=identity,
        handle=link.handle,
        wallet_address=link.wallet_address,
        verified_at=link.verified_at,
        **summarize_grants(grants, public_id, unix_now()),
    )
