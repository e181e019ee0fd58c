# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Custom exception hierarchy and machine-readable error codes for Tessera.

Exceptions are raised inside the identity components and converted into
typed results (``CeremonyResult``, ``GateDecision``, ...) before they reach
a caller. Only the ``ErrorCode`` and a generic message ever cross the HTTP
boundary; ``details`` are for the audit trail.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable failure codes returned to callers."""

    CHALLENGE_EXPIRED_OR_MISSING = "CHALLENGE_EXPIRED_OR_MISSING"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    REPLAY_DETECTED = "REPLAY_DETECTED"
    DUPLICATE_ENROLLMENT = "DUPLICATE_ENROLLMENT"
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    REVOKED = "REVOKED"
    BACKING_STORE_UNAVAILABLE = "BACKING_STORE_UNAVAILABLE"
    MALFORMED_REQUEST = "MALFORMED_REQUEST"


# Generic, user-facing messages. Specific reasons go to the audit trail only.
PUBLIC_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.CHALLENGE_EXPIRED_OR_MISSING: "Session expired. Please start again.",
    ErrorCode.SIGNATURE_INVALID: "Authentication failed",
    ErrorCode.REPLAY_DETECTED: "Authentication failed",
    ErrorCode.DUPLICATE_ENROLLMENT: "This device already has an identity. Please log in instead.",
    ErrorCode.CREDENTIAL_NOT_FOUND: "Identity not found",
    ErrorCode.REVOKED: "Access revoked",
    ErrorCode.BACKING_STORE_UNAVAILABLE: "Service temporarily unavailable",
    ErrorCode.MALFORMED_REQUEST: "Malformed request",
}


def public_message(code: ErrorCode) -> str:
    """Return the generic message for an error code."""
    return PUBLIC_MESSAGES.get(code, "Request failed")


class TesseraException(Exception):  # noqa: N818 - matches the package naming scheme
    """Base exception for all Tessera errors.

    All Tessera-specific exceptions should inherit from this class.
    """

    code: ErrorCode | None = None

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(TesseraException):
    """Exception for malformed input.

    Raised when:
    - A required field is missing
    - A field has the wrong type or encoding
    - Binary structures (authenticator data, client data) cannot be parsed
    """

    code = ErrorCode.MALFORMED_REQUEST

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:64]
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(TesseraException):
    """Exception for configuration errors.

    Raised when:
    - Required environment variables are missing
    - A backend name is not recognised
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class NotFoundError(TesseraException):
    """Exception for resource not found errors."""

    code = ErrorCode.CREDENTIAL_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(TesseraException):
    """Exception for conflict errors.

    Raised when:
    - A device fingerprint or credential id is already enrolled
    - A conditional write lost a race
    """

    code = ErrorCode.DUPLICATE_ENROLLMENT

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class StoreUnavailableError(TesseraException):
    """Exception raised when the key-value backend cannot be reached."""

    code = ErrorCode.BACKING_STORE_UNAVAILABLE

    def __init__(self, message: str, backend: str | None = None):
        details = {}
        if backend:
            details["backend"] = backend
        super().__init__(message, details)
        self.backend = backend


class WebAuthnVerificationError(TesseraException):
    """A WebAuthn ceremony check failed.

    ``code`` is set per instance because one verification routine can fail
    in several distinct ways (bad signature, stale counter, ...).
    """

    def __init__(self, code: ErrorCode, reason: str, details: dict | None = None):
        super().__init__(reason, details)
        self.code = code
        self.reason = reason


class AccessRevokedError(TesseraException):
    """The access gate denied a request.

    ``code`` is REVOKED, or BACKING_STORE_UNAVAILABLE when a fail-closed
    gate could not reach the revocation store. ``message`` carries the
    gate's reason (``pairwise``, ``global`` or ``store_unavailable``).
    """

    def __init__(self, code: ErrorCode, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason
