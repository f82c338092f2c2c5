"""Identity verification endpoints.

- ``POST /verify/message`` -- issue a challenge for an identity
- ``POST /verify/signature`` -- redeem a signed challenge, linking the wallet
- ``GET /verify/status/{identity}`` -- current link, if any
- ``POST /verify/revoke`` -- revoke the current link (history is kept)
- ``GET /verify/history/{identity}`` -- every link ever recorded, newest first

Verification failures are raised as ``VerificationError`` subclasses and
rendered by the app's exception handler.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from delegex.server.models import (
    ChallengeRequest,
    ChallengeResponse,
    LinkHistoryResponse,
    LinkRecord,
    RevokeRequest,
    RevokeResponse,
    VerifySignatureRequest,
    VerifySignatureResponse,
    VerifyStatusResponse,
)

router = APIRouter(prefix="/verify", tags=["verify"])


@router.post("/message", response_model=ChallengeResponse)
async def issue_message(body: ChallengeRequest, request: Request) -> ChallengeResponse:
    challenge = await request.app.state.verifier.issue_challenge(body.identity, body.handle)
    return ChallengeResponse(
        message=challenge.message,
        challenge_hash=challenge.challenge_hash,
        expires_at=challenge.expires_at_ms,
    )


@router.post("/signature", response_model=VerifySignatureResponse)
async def verify_signature(body: VerifySignatureRequest, request: Request) -> VerifySignatureResponse:
    link = await request.app.state.verifier.verify(
        body.address, body.signature, body.message, body.identity, body.handle
    )
    return VerifySignatureResponse(
        success=True, wallet_address=link.wallet_address, verified_at=link.verified_at
    )


@router.get("/status/{identity}", response_model=VerifyStatusResponse)
async def verify_status(identity: str, request: Request) -> VerifyStatusResponse:
    link = await request.app.state.link_store.get_active(identity)
    if link is None:
        return VerifyStatusResponse(linked=False)
    return VerifyStatusResponse(
        linked=True,
        wallet_address=link.wallet_address,
        handle=link.handle,
        verified_at=link.verified_at,
    )


@router.post("/revoke", response_model=RevokeResponse)
async def revoke(body: RevokeRequest, request: Request) -> RevokeResponse:
    """Revoke the active link.  ``success`` is false when there was none."""
    revoked = await request.app.state.link_store.revoke(body.identity)
    return RevokeResponse(success=revoked)


@router.get("/history/{identity}", response_model=LinkHistoryResponse)
async def link_history(identity: str, request: Request) -> LinkHistoryResponse:
    links = await request.app.state.link_store.history(identity)
    return LinkHistoryResponse(
        identity=identity,
        links=[
            LinkRecord(
                wallet_address=link.wallet_address,
                handle=link.handle,
                verified_at=link.verified_at,
                active=link.active,
                revoked_at=link.revoked_at,
                challenge_hash=link.challenge_hash,
            )
            for link in links
        ],
    )
