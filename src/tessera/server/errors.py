# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Standardized REST error responses for the Tessera API.

Every endpoint answers failures in one format:
{
    "success": false,
    "error": {
        "code": "ERROR_CODE",
        "message": "Generic human readable message"
    }
}

Identity errors use the ErrorCode values. Messages are always the generic
ones; specific reasons stay in the audit trail and server logs.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from starlette.responses import JSONResponse

from ..core.exceptions import ErrorCode
from ..core.response import TesseraResponse

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP-LAYER ERROR CODES
# =============================================================================

VALIDATION_INVALID_JSON = "VALIDATION_INVALID_JSON"

AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"

FORBIDDEN_INSUFFICIENT_PERMISSION = "FORBIDDEN_INSUFFICIENT_PERMISSION"

RATE_LIMITED = "RATE_LIMITED"
INTERNAL_ERROR = "INTERNAL_ERROR"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

# HTTP status for each identity error code
STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.MALFORMED_REQUEST: 400,
    ErrorCode.CHALLENGE_EXPIRED_OR_MISSING: 400,
    ErrorCode.SIGNATURE_INVALID: 401,
    ErrorCode.REPLAY_DETECTED: 401,
    ErrorCode.REVOKED: 403,
    ErrorCode.CREDENTIAL_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_ENROLLMENT: 409,
    ErrorCode.BACKING_STORE_UNAVAILABLE: 503,
}


def status_for(code: ErrorCode) -> int:
    return STATUS_BY_CODE.get(code, 400)


# =============================================================================
# ERROR RESPONSE HELPERS
# =============================================================================


def error_response(
    code: str,
    message: str,
    status_code: int = 400,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code
        message: Human-readable error message
        status_code: HTTP status code (default 400)
        extra: Additional members of the ``error`` object
    """
    error: dict[str, Any] = {"code": code, "message": message}
    if extra:
        error.update(extra)
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


def envelope(response: TesseraResponse, status_code: int = 200) -> JSONResponse:
    """Render a core TesseraResponse with the matching HTTP status."""
    if response.success:
        return JSONResponse(response.to_dict(), status_code=status_code)
    code = response.code or ErrorCode.MALFORMED_REQUEST
    return JSONResponse(response.to_dict(), status_code=status_for(code))


def validation_error(message: str = "Malformed request") -> JSONResponse:
    """Create a 400 error with the MALFORMED_REQUEST code."""
    return error_response(ErrorCode.MALFORMED_REQUEST.value, message, status_code=400)


def missing_field_error(field_name: str) -> JSONResponse:
    """Create a 400 error for a missing required field."""
    return validation_error(f"{field_name} is required")


def invalid_json_error() -> JSONResponse:
    """Create a 400 error for an invalid JSON body."""
    return error_response(VALIDATION_INVALID_JSON, "Invalid JSON body", status_code=400)


def auth_error(message: str = "Authentication failed", code: str = AUTH_INVALID_TOKEN) -> JSONResponse:
    """Create a 401 error for operator token failures."""
    return error_response(code, message, status_code=401)


def forbidden_error(message: str = "Permission denied", code: str = FORBIDDEN_INSUFFICIENT_PERMISSION) -> JSONResponse:
    """Create a 403 error for missing capabilities."""
    return error_response(code, message, status_code=403)


def rate_limited_error(retry_after: int = 60) -> JSONResponse:
    """Create a 429 error with a Retry-After header."""
    response = error_response(RATE_LIMITED, "Too many requests", status_code=429)
    response.headers["Retry-After"] = str(retry_after)
    return response


def internal_error(message: str = "Internal server error", exc: BaseException | None = None) -> JSONResponse:
    """Create a 500 error.

    The exception is logged with a request id; nothing about it reaches the client.
    """
    request_id = uuid.uuid4().hex[:12]
    if exc is not None:
        logger.error("request_id=%s %s: %s", request_id, type(exc).__name__, exc)
    return error_response(INTERNAL_ERROR, message, status_code=500, extra={"request_id": request_id})


def service_unavailable_error(service: str) -> JSONResponse:
    """Create a 503 error for an uninitialized component."""
    return error_response(SERVICE_UNAVAILABLE, f"{service} not initialized", status_code=503)
