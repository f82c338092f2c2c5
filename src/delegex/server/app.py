"""FastAPI application factory for the delegex server."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exceptions import HTTPException, RequestValidationError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from delegex import __version__
from delegex.core.executor import DelegatedExecutor
from delegex.core.resolver import PermissionResolver
from delegex.core.session_key import SessionKeyManager
from delegex.core.verification import ChallengeStore, IdentityVerifier
from delegex.db.engine import create_async_engine_from_url
from delegex.db.session import async_session_factory, create_tables
from delegex.db.stores import GrantStore, LinkStore
from delegex.protocol.errors import DelegexError, NoMatchingGrantError
from delegex.relay import RelayTransport, create_relay_transport
from delegex.server.config import Settings

logger = logging.getLogger(__name__)


async def _challenge_cleanup_loop(app: FastAPI) -> None:
    """Periodically drop expired, unredeemed challenges."""
    interval = app.state.settings.challenge_cleanup_interval
    while True:
        await asyncio.sleep(interval)
        count = await app.state.challenges.cleanup_expired()
        if count:
            logger.info("Cleaned up %d expired challenges", count)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire the stores and services; release them on shutdown."""
    settings: Settings = app.state.settings

    # Key material first: a misconfigured deployment must not start serving
    key_manager = app.state.key_manager or SessionKeyManager.from_settings(settings)
    handle = key_manager.get_signing_key()
    app.state.key_manager = key_manager

    app.state.engine = create_async_engine_from_url(settings.database_url)
    await create_tables(app.state.engine)
    app.state.session_factory = async_session_factory(app.state.engine)

    app.state.link_store = LinkStore(app.state.session_factory)
    app.state.grant_store = GrantStore(app.state.session_factory)
    app.state.resolver = PermissionResolver(app.state.grant_store)

    app.state.challenges = ChallengeStore(ttl_seconds=settings.challenge_ttl_seconds)
    app.state.verifier = IdentityVerifier(
        app.state.link_store, app.state.challenges, app_name=settings.app_name
    )

    owns_transport = app.state.relay_transport is None
    if owns_transport:
        app.state.relay_transport = create_relay_transport(
            settings.relay_url, timeout=settings.relay_timeout
        )
    app.state.executor = DelegatedExecutor(
        resolver=app.state.resolver,
        key_manager=key_manager,
        transport=app.state.relay_transport,
        chain_id=settings.chain_id,
        timeout=settings.relay_timeout,
        fee_token=settings.fee_token,
    )
    logger.info(
        "Delegex ready: chain=%d relay=%s backend key %s %s...",
        settings.chain_id,
        settings.relay_url,
        handle.key_type.value,
        handle.public_id[:18],
    )

    cleanup_task = asyncio.create_task(_challenge_cleanup_loop(app))

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    if owns_transport:
        await app.state.relay_transport.close()
    await app.state.engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    relay_transport: RelayTransport | None = None,
    key_manager: SessionKeyManager | None = None,
) -> FastAPI:
    """Create and configure the delegex FastAPI application.

    *relay_transport* and *key_manager* override what *settings* would
    build; tests pass an ``InMemoryRelay`` here.
    """
    settings = settings or Settings()

    # Configure logging from settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.debug:
        logging.getLogger("delegex").setLevel(logging.DEBUG)

    app = FastAPI(
        title="Delegex",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.relay_transport = relay_transport
    app.state.key_manager = key_manager

    # Consistent JSON error shape: {"error": "<code>", "detail": "<message>"}
    _STATUS_TO_ERROR = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        502: "bad_gateway",
        504: "gateway_timeout",
    }

    @app.exception_handler(DelegexError)
    async def delegex_error_handler(request: Request, exc: DelegexError) -> JSONResponse:
        content = {"success": False, "error": exc.kind.value, "detail": str(exc)}
        if isinstance(exc, NoMatchingGrantError):
            content["cause"] = exc.cause.value
            content["detail"] = exc.detail
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind.value, exc)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": _STATUS_TO_ERROR.get(exc.status_code, "error"),
                "detail": exc.detail,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "detail": str(exc),
            },
        )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from delegex.server.routes.execute import router as execute_router
    from delegex.server.routes.health import router as health_router
    from delegex.server.routes.permissions import router as permissions_router
    from delegex.server.routes.verify import router as verify_router

    app.include_router(verify_router)
    app.include_router(permissions_router)
    app.include_router(execute_router)
    app.include_router(health_router)

    return app
