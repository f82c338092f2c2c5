"""``GET /health`` -- liveness check (no auth)."""

from __future__ import annotations

from fastapi import APIRouter, Request

from delegex import __version__
from delegex.relay import MEMORY_URL
from delegex.server.models import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    relay_url = request.app.state.settings.relay_url
    return HealthResponse(
        status="ok",
        version=__version__,
        relay="memory" if relay_url.startswith(MEMORY_URL) else "jsonrpc",
    )
