# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Identity API endpoints.

Implements:
- POST /api/v1/enroll/begin                         - Start enrollment (challenge + options)
- POST /api/v1/enroll/complete                      - Verify attestation, mint global id
- POST /api/v1/auth/begin                           - Start authentication for a global id
- POST /api/v1/auth/complete                        - Verify assertion
- POST /api/v1/authorize                            - Log in to a relying party (pairwise id + claims)
- POST /api/v1/account/delete                       - Delete identity after a fresh assertion
- POST /api/v1/revoke                               - Revoke a pairwise or global id (REVOKE)
- POST /api/v1/restore                              - Lift a revocation (RESTORE)
- GET  /api/v1/revocation-status/{subject_key}      - Revocation state + remaining TTL (READ_STATUS)
- GET  /api/v1/consent-history/{global_id}          - Disclosure decisions (READ_AUDIT)
- GET  /api/v1/verify-access                        - Real-time access check behind RevocationMiddleware
- GET  /api/v1/health                               - Store connectivity
"""

from __future__ import annotations

import json
import logging
from typing import Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..core.container import IdentityContainer
from ..core.exceptions import ErrorCode, TesseraException, public_message
from ..core.response import TesseraResponse, err, ok
from ..identity.ceremony import ClientContext
from ..privacy.capabilities import Capability
from ..privacy.revocation import RevocationScope
from .auth import authenticate, require_capability
from .errors import (
    envelope,
    error_response,
    invalid_json_error,
    missing_field_error,
    rate_limited_error,
    service_unavailable_error,
    validation_error,
)

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================


def _container(request: Request) -> IdentityContainer | None:
    return getattr(request.app.state, "container", None)


def _client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _rate_limited(request: Request) -> JSONResponse | None:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return None
    key = request.client.host if request.client else "unknown"
    if limiter.check(key):
        return None
    logger.warning(f"Rate limit exceeded for {key} on {request.url.path}")
    return rate_limited_error()


async def _json_body(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return invalid_json_error()
    if not isinstance(body, dict):
        return validation_error("Request body must be a JSON object")
    return body


def _respond(response: TesseraResponse, status_code: int = 200) -> JSONResponse:
    """Envelope a core response; REVOKED carries the gate's sub-reason like the middleware does."""
    if response.code is ErrorCode.REVOKED:
        return error_response(
            ErrorCode.REVOKED.value, public_message(ErrorCode.REVOKED), status_code=403, extra={"reason": response.reason}
        )
    return envelope(response, status_code=status_code)


def _parse_scope(value: Any) -> RevocationScope | None:
    try:
        return RevocationScope(value or RevocationScope.PAIRWISE.value)
    except ValueError:
        return None


# =============================================================================
# CEREMONIES
# =============================================================================


async def enroll_begin_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/enroll/begin - Issue an enrollment challenge.

    Returns:
        200: {"success": true, "data": {"session_token", "options"}}
        503: Store unavailable
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    result = await run_in_threadpool(container.ceremony.begin_enrollment)
    return envelope(result.to_response())


async def enroll_complete_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/enroll/complete - Verify the attestation and mint a global id.

    Request Body (JSON):
        {
            "session_token": "...",
            "credential": {"id", "rawId", "type", "response": {...}}
        }

    Returns:
        201: {"success": true, "data": {"global_id", "credential_id", ...}}
        400: MALFORMED_REQUEST / CHALLENGE_EXPIRED_OR_MISSING
        401: SIGNATURE_INVALID
        409: DUPLICATE_ENROLLMENT
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    result = await run_in_threadpool(
        container.ceremony.complete_enrollment,
        body.get("session_token"),
        body.get("credential"),
        _client_context(request),
    )
    return envelope(result.to_response(), status_code=201)


async def auth_begin_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/auth/begin - Issue an authentication challenge for ``global_id``.

    Returns:
        200: {"success": true, "data": {"session_token", "options"}}
        403: REVOKED (error.reason is "global")
        404: CREDENTIAL_NOT_FOUND
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body
    if not body.get("global_id"):
        return missing_field_error("global_id")

    result = await run_in_threadpool(
        container.ceremony.begin_authentication, body["global_id"], _client_context(request)
    )
    return _respond(result.to_response())


async def auth_complete_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/auth/complete - Verify an assertion and bump the counter.

    A globally revoked identity gets 403 before any signature work.
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    result = await run_in_threadpool(
        container.ceremony.complete_authentication,
        body.get("session_token"),
        body.get("credential"),
        _client_context(request),
    )
    return _respond(result.to_response())


async def authorize_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/authorize - Log in to a relying party.

    Request Body (JSON):
        {
            "session_token": "...",           // from /auth/begin
            "credential": {...},              // assertion
            "relying_party_id": "health",
            "consented_fields": ["full_name"] // optional
        }

    Returns:
        200: {"success": true, "data": {"pairwise_id", "claims", ...}}
        403: REVOKED (error.reason is "pairwise" or "global")
        503: BACKING_STORE_UNAVAILABLE under fail-closed
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    result = await run_in_threadpool(
        container.authorization.authorize,
        body.get("session_token"),
        body.get("credential"),
        body.get("relying_party_id"),
        body.get("consented_fields"),
        _client_context(request),
    )
    return _respond(result.to_response())


async def account_delete_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/account/delete - Permanently delete the identity.

    Requires a fresh assertion (session_token from /auth/begin + credential).
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")
    limited = _rate_limited(request)
    if limited:
        return limited

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    response = await run_in_threadpool(
        container.authorization.delete_account,
        body.get("session_token"),
        body.get("credential"),
        _client_context(request),
    )
    return _respond(response)


# =============================================================================
# REVOCATION (operator)
# =============================================================================


async def revoke_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/revoke - Revoke a subject.

    Request Body (JSON):
        {
            "subject_key": "did:tessera:pairwise:...",
            "scope": "pairwise" | "global",   // default pairwise
            "ttl_seconds": 300,               // optional
            "reason": "lost device"           // optional
        }
    """
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")

    client = authenticate(request)
    if isinstance(client, JSONResponse):
        return client
    denied = require_capability(client, Capability.REVOKE)
    if denied:
        return denied

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    subject_key = body.get("subject_key")
    if not subject_key:
        return missing_field_error("subject_key")
    scope = _parse_scope(body.get("scope"))
    if scope is None:
        return validation_error("scope must be 'pairwise' or 'global'")
    ttl = body.get("ttl_seconds")
    if ttl is not None and (not isinstance(ttl, int) or isinstance(ttl, bool)):
        return validation_error("ttl_seconds must be an integer")
    reason = body.get("reason")
    if reason is not None and not isinstance(reason, str):
        return validation_error("reason must be a string")

    try:
        entry = await run_in_threadpool(
            container.revocation.revoke, subject_key, scope, ttl, reason, f"operator:{client.client_id}"
        )
    except TesseraException as e:
        return envelope(err(e.code or ErrorCode.MALFORMED_REQUEST, e.message))

    return envelope(
        ok(
            {
                "subject_key": entry.subject_key,
                "scope": entry.scope.value,
                "reason": entry.reason,
                "revoked_at": entry.revoked_at,
                "ttl_seconds": entry.ttl_seconds,
            }
        )
    )


async def restore_endpoint(request: Request) -> JSONResponse:
    """POST /api/v1/restore - Lift a revocation. Restoring a non-revoked subject is a no-op."""
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")

    client = authenticate(request)
    if isinstance(client, JSONResponse):
        return client
    denied = require_capability(client, Capability.RESTORE)
    if denied:
        return denied

    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body

    subject_key = body.get("subject_key")
    if not subject_key:
        return missing_field_error("subject_key")
    scope = _parse_scope(body.get("scope"))
    if scope is None:
        return validation_error("scope must be 'pairwise' or 'global'")

    try:
        restored = await run_in_threadpool(
            container.revocation.restore, subject_key, scope, f"operator:{client.client_id}"
        )
    except TesseraException as e:
        return envelope(err(e.code or ErrorCode.MALFORMED_REQUEST, e.message))

    return envelope(ok({"subject_key": subject_key, "scope": scope.value, "restored": restored}))


async def revocation_status_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/revocation-status/{subject_key}?scope=pairwise|global"""
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")

    client = authenticate(request)
    if isinstance(client, JSONResponse):
        return client
    denied = require_capability(client, Capability.READ_STATUS)
    if denied:
        return denied

    scope = _parse_scope(request.query_params.get("scope"))
    if scope is None:
        return validation_error("scope must be 'pairwise' or 'global'")

    try:
        status = await run_in_threadpool(container.revocation.status, request.path_params["subject_key"], scope)
    except TesseraException as e:
        return envelope(err(e.code or ErrorCode.MALFORMED_REQUEST, e.message))
    return envelope(ok(status.to_dict()))


async def consent_history_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/consent-history/{global_id}?limit=50"""
    container = _container(request)
    if container is None:
        return service_unavailable_error("Identity core")

    client = authenticate(request)
    if isinstance(client, JSONResponse):
        return client
    denied = require_capability(client, Capability.READ_AUDIT)
    if denied:
        return denied

    try:
        limit = min(int(request.query_params.get("limit", "50")), 500)
    except ValueError:
        return validation_error("limit must be an integer")

    history = await run_in_threadpool(
        container.authorization.consent_history, request.path_params["global_id"], limit
    )
    return envelope(ok({"history": history, "count": len(history)}))


# =============================================================================
# MISC
# =============================================================================


async def verify_access_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/verify-access - Reached only when RevocationMiddleware let the request through."""
    pairwise_id = request.headers.get("X-Pairwise-ID") or request.query_params.get("pairwise_id")
    global_id = request.headers.get("X-Global-ID") or request.query_params.get("global_id")
    if not pairwise_id and not global_id:
        return missing_field_error("X-Pairwise-ID or X-Global-ID")
    return envelope(ok({"allowed": True}))


async def health_endpoint(request: Request) -> JSONResponse:
    """GET /api/v1/health - Report store connectivity and audit health."""
    container = _container(request)
    settings = getattr(request.app.state, "settings", None)

    health: dict[str, Any] = {
        "status": "healthy",
        "server": settings.server_name if settings else "tessera",
        "version": settings.server_version if settings else "unknown",
    }
    if container is None:
        health["status"] = "degraded"
        health["store"] = "not initialized"
        return JSONResponse(health, status_code=503)

    try:
        latency = await run_in_threadpool(container.backend.ping)
        health["store"] = {"backend": container.backend.name, "status": "connected", "latency_ms": round(latency, 2)}
    except TesseraException as e:
        logger.error(f"Health check: store unavailable: {e.message}")
        health["store"] = {"backend": container.backend.name, "status": "unavailable"}
        health["status"] = "degraded"

    health["audit_failures"] = container.audit.failures
    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(health, status_code=status_code)
