# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Starlette ASGI application for the Tessera identity API.

All routes live under /api/v1. The identity core is built once per app and
kept on ``app.state.container``; endpoints never reach for globals.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.container import IdentityContainer, build_container
from ..core.logging import configure_logging
from .auth import TokenStore
from .config import ServerSettings, get_settings
from .endpoints import (
    account_delete_endpoint,
    auth_begin_endpoint,
    auth_complete_endpoint,
    authorize_endpoint,
    consent_history_endpoint,
    enroll_begin_endpoint,
    enroll_complete_endpoint,
    health_endpoint,
    restore_endpoint,
    revocation_status_endpoint,
    revoke_endpoint,
    verify_access_endpoint,
)
from .errors import internal_error
from .middleware import CorrelationIdMiddleware, RateLimiter, RevocationMiddleware

logger = logging.getLogger(__name__)

API_V1 = "/api/v1"


async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log with a request id, return a generic 500."""
    return internal_error(exc=exc)


@asynccontextmanager
async def lifespan(app: Starlette):
    """Application lifespan handler."""
    settings: ServerSettings = app.state.settings
    container: IdentityContainer = app.state.container
    logger.info(
        f"Starting Tessera on {settings.host}:{settings.port} "
        f"(environment={settings.environment}, store={container.backend.name})"
    )
    swept = container.challenges.cleanup_expired()
    if swept:
        logger.info(f"Removed {swept} expired challenges at startup")

    yield

    logger.info("Tessera shutting down")


def create_app(
    settings: ServerSettings | None = None,
    container: IdentityContainer | None = None,
    token_store: TokenStore | None = None,
) -> Starlette:
    """Create the Starlette ASGI application.

    Args:
        settings: Server settings (defaults to the environment).
        container: Pre-built identity core (tests inject one with fake stores).
        token_store: Operator token store (defaults to ``settings.token_file``).
    """
    settings = settings or get_settings()
    container = container or build_container(settings)
    token_store = token_store or TokenStore(settings.token_file)

    routes = [
        Route(f"{API_V1}/health", health_endpoint, methods=["GET"]),
        # WebAuthn ceremonies
        Route(f"{API_V1}/enroll/begin", enroll_begin_endpoint, methods=["POST"]),
        Route(f"{API_V1}/enroll/complete", enroll_complete_endpoint, methods=["POST"]),
        Route(f"{API_V1}/auth/begin", auth_begin_endpoint, methods=["POST"]),
        Route(f"{API_V1}/auth/complete", auth_complete_endpoint, methods=["POST"]),
        # Relying party login and account lifecycle
        Route(f"{API_V1}/authorize", authorize_endpoint, methods=["POST"]),
        Route(f"{API_V1}/account/delete", account_delete_endpoint, methods=["POST"]),
        # Kill switch (operator tokens)
        Route(f"{API_V1}/revoke", revoke_endpoint, methods=["POST"]),
        Route(f"{API_V1}/restore", restore_endpoint, methods=["POST"]),
        Route(f"{API_V1}/revocation-status/{{subject_key:path}}", revocation_status_endpoint, methods=["GET"]),
        Route(f"{API_V1}/consent-history/{{global_id:path}}", consent_history_endpoint, methods=["GET"]),
        # Protected by RevocationMiddleware
        Route(f"{API_V1}/verify-access", verify_access_endpoint, methods=["GET"]),
    ]

    middleware = [
        Middleware(CorrelationIdMiddleware),
        Middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Pairwise-ID", "X-Global-ID", "X-Request-ID"],
            expose_headers=["X-Request-ID", "X-Revocation-Check-Ms"],
        ),
        Middleware(RevocationMiddleware, protected_prefixes=settings.protected_path_prefixes),
    ]

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={Exception: unhandled_exception},
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container
    app.state.token_store = token_store
    app.state.rate_limiter = RateLimiter(settings.rate_limit_rpm)
    return app


def run() -> None:
    """Run the server using uvicorn."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, log_file=settings.log_file)

    logger.info(f"Starting Tessera HTTP server on {settings.host}:{settings.port}")

    uvicorn.run(
        "tessera.server.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
