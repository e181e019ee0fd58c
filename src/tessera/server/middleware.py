# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Starlette middleware and the per-client rate limiter.

- CorrelationIdMiddleware: scopes a correlation id to each request
- RevocationMiddleware: runs the access gate in front of protected paths
- RateLimiter: sliding one-minute window per client key
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from ..core.logging import correlation_context
from .errors import service_unavailable_error, status_for

logger = logging.getLogger(__name__)

PAIRWISE_HEADER = "X-Pairwise-ID"
GLOBAL_HEADER = "X-Global-ID"
LATENCY_HEADER = "X-Revocation-Check-Ms"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopt the caller's X-Request-ID (or mint one) for every log line of the request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        with correlation_context(incoming[:64] if incoming else None) as cid:
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = cid
        return response


class RevocationMiddleware(BaseHTTPMiddleware):
    """Deny protected requests whose pairwise or global id is revoked.

    Each identifier is looked up in the ``X-Pairwise-ID`` / ``X-Global-ID``
    header, then in the JSON body of a POST, then in the ``pairwise_id`` /
    ``global_id`` query parameter. Requests carrying neither pass through
    untouched.
    """

    def __init__(self, app: ASGIApp, protected_prefixes: list[str] | None = None):
        super().__init__(app)
        self.protected_prefixes = tuple(protected_prefixes or ())

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(self.protected_prefixes):
            return await call_next(request)

        body = await _json_body(request)
        pairwise_id = _identifier(request, body, PAIRWISE_HEADER, "pairwise_id")
        global_id = _identifier(request, body, GLOBAL_HEADER, "global_id")
        if not pairwise_id and not global_id:
            return await call_next(request)

        container = getattr(request.app.state, "container", None)
        if container is None:
            return service_unavailable_error("Identity core")

        ip_address = request.client.host if request.client else None
        decision = await run_in_threadpool(
            container.gate.check, pairwise_id, global_id, ip_address, request.url.path
        )
        latency = f"{decision.latency_ms:.2f}"

        if not decision.allowed and decision.code is not None:
            response = JSONResponse(decision.to_dict(), status_code=status_for(decision.code))
            response.headers[LATENCY_HEADER] = latency
            return response

        response = await call_next(request)
        response.headers[LATENCY_HEADER] = latency
        return response


async def _json_body(request: Request) -> dict:
    """The POST body as a JSON object, or {} when it is absent or not JSON."""
    if request.method != "POST" or "json" not in request.headers.get("content-type", ""):
        return {}
    try:
        body = json.loads(await request.body() or b"{}")
    except (UnicodeDecodeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def _identifier(request: Request, body: dict, header: str, name: str) -> str | None:
    value = request.headers.get(header) or body.get(name) or request.query_params.get(name)
    return value if isinstance(value, str) and value else None


class RateLimiter:
    """In-memory, per-instance sliding-window limiter.

    Clients idle for a whole window are swept out once per window, so the
    table only holds keys seen in the last minute.
    """

    window_seconds = 60

    def __init__(self, rpm_limit: int, clock: Callable[[], float] = time.time):
        self.rpm_limit = rpm_limit
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def check(self, client_key: str) -> bool:
        """Record a hit for ``client_key``. Returns False when over the limit."""
        now = self._clock()
        window_start = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(window_start)
                self._last_sweep = now
            hits = [t for t in self._hits.get(client_key, ()) if t > window_start]
            if len(hits) >= self.rpm_limit:
                self._hits[client_key] = hits
                return False
            hits.append(now)
            self._hits[client_key] = hits
            return True

    def _sweep(self, window_start: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in stale:
            del self._hits[key]

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
