"""Execution endpoints for the conversational front-end's tool layer.

- ``POST /execute`` -- run a batch (raw calls or a builder action) for a
  wallet, or for the wallet linked to an identity
- ``GET /execute/status/{batch_id}`` -- read-only relay status lookup

The HTTP status reflects the outcome's error kind; the body is always the
full ``ExecutionOutcome``.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request, Response

from delegex.core.calls import build_calls
from delegex.protocol.address import validate_address
from delegex.protocol.errors import ErrorKind, RelayError
from delegex.protocol.types import Call, DelegatedCallBatch
from delegex.server.models import BatchStatusResponse, ExecuteRequest, ExecuteResponse

router = APIRouter(prefix="/execute", tags=["execute"])

OUTCOME_STATUS = {
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.DUPLICATE_BATCH: 409,
    ErrorKind.STALE_OR_MISMATCHED_GRANT: 409,
    ErrorKind.TRANSIENT_NETWORK_ERROR: 503,
    ErrorKind.AMBIGUOUS_OUTCOME: 202,
    ErrorKind.PARTIAL_EXECUTION_RISK: 502,
    ErrorKind.UNKNOWN_RELAY_ERROR: 502,
}


async def _wallet_for(body: ExecuteRequest, request: Request) -> str:
    if body.wallet_address:
        return validate_address(body.wallet_address)
    if body.identity:
        link = await request.app.state.link_store.get_active(body.identity)
        if link is None:
            raise HTTPException(status_code=404, detail=f"No verified wallet for identity {body.identity}")
        return link.wallet_address
    raise HTTPException(status_code=400, detail="Provide walletAddress or identity")


def _batch_for(body: ExecuteRequest) -> DelegatedCallBatch:
    if (body.calls is None) == (body.action is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of calls or action")
    try:
        if body.action is not None:
            return build_calls(body.action, **body.params)
        return DelegatedCallBatch(
            calls=tuple(Call(target=c.target, calldata=c.calldata, value=c.value) for c in body.calls)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("", response_model=ExecuteResponse)
async def execute(body: ExecuteRequest, request: Request, response: Response) -> ExecuteResponse:
    wallet = await _wallet_for(body, request)
    batch = _batch_for(body)
    outcome = await request.app.state.executor.execute(batch, wallet)
    if not outcome.success:
        response.status_code = OUTCOME_STATUS.get(outcome.error_kind, 502)
    return ExecuteResponse(
        success=outcome.success,
        relay_batch_id=outcome.relay_batch_id,
        transaction_hashes=outcome.transaction_hashes,
        error_kind=outcome.error_kind.value if outcome.error_kind else None,
        error_detail=outcome.error_detail,
        grant_id=outcome.grant_id,
    )


@router.get("/status/{batch_id}", response_model=BatchStatusResponse)
async def batch_status(batch_id: str, request: Request) -> BatchStatusResponse:
    try:
        status = await request.app.state.executor.fetch_status(batch_id)
    except asyncio.TimeoutError as exc:
        raise HTTPException(status_code=504, detail="Relay status lookup timed out") from exc
    except RelayError as exc:
        raise HTTPException(status_code=502, detail=f"Relay status lookup failed: {exc}") from exc
    return BatchStatusResponse(
        batch_id=status.batch_id,
        status=status.status,
        pending=status.pending,
        confirmed=status.confirmed,
        transaction_hashes=status.transaction_hashes,
    )
