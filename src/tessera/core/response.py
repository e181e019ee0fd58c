# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Standard response envelope for Tessera core operations.

Every public operation that can fail for protocol reasons returns a
``TesseraResponse`` instead of raising, so callers always receive a
``{success, data, error}`` structure with a machine-readable code.

Usage::

    from tessera.core.response import ok, err

    return ok(data={"global_id": did})
    return err(ErrorCode.REPLAY_DETECTED, "counter 7 <= stored 7")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .exceptions import ErrorCode, public_message


@dataclass
class TesseraResponse:
    """Unified response envelope.

    Attributes:
        success: True when the operation completed without error.
        data:    Payload returned on success. None for void operations.
        code:    Machine-readable error code on failure.
        reason:  Specific failure reason. Goes to the audit trail, never to the client.
        retryable: True when the same request may succeed later (store outage).
    """

    success: bool
    data: Any = None
    code: ErrorCode | None = None
    reason: str | None = None
    retryable: bool = False

    @property
    def message(self) -> str | None:
        """Generic human-readable message for the error code."""
        if self.code is None:
            return None
        return public_message(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the HTTP boundary (specific reason is omitted)."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.code is not None:
            d["error"] = {"code": self.code.value, "message": self.message}
            if self.retryable:
                d["error"]["retryable"] = True
        return d


def ok(data: Any = None) -> TesseraResponse:
    """Create a successful TesseraResponse."""
    return TesseraResponse(success=True, data=data)


def err(code: ErrorCode, reason: str | None = None, retryable: bool = False) -> TesseraResponse:
    """Create a failed TesseraResponse."""
    return TesseraResponse(success=False, code=code, reason=reason or code.value, retryable=retryable)
