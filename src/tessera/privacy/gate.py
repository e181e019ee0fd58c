# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Access gate: the revocation check that runs before any protected work.

Order is pairwise first, then global. The first live marker denies the
request with reason ``pairwise`` or ``global``. When the store cannot be
reached the configured RevocationFailurePolicy decides:

- FAIL_CLOSED: deny with a retryable BACKING_STORE_UNAVAILABLE
- FAIL_OPEN:   allow, log at ERROR and audit the bypass
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from ..core.config import RevocationFailurePolicy
from ..core.exceptions import ErrorCode, StoreUnavailableError, public_message
from ..core.logging import short_id
from .audit import AuditAction, AuditTrail
from .revocation import RevocationRegistry, RevocationScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    code: ErrorCode | None = None
    reason: str | None = None
    retryable: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        if self.allowed or self.code is None:
            return {"success": True}
        error: dict[str, Any] = {"code": self.code.value, "message": public_message(self.code)}
        if self.code is ErrorCode.REVOKED:
            error["reason"] = self.reason
        if self.retryable:
            error["retryable"] = True
        return {"success": False, "error": error}


class AccessGate:
    """Consults the RevocationRegistry for a (pairwise, global) pair.

    Args:
        registry: Revocation registry.
        audit: Trail for denials and fail-open bypasses.
        failure_policy: Resolved policy (AUTO must already be resolved).
    """

    def __init__(
        self,
        registry: RevocationRegistry,
        audit: AuditTrail,
        failure_policy: RevocationFailurePolicy = RevocationFailurePolicy.FAIL_CLOSED,
    ):
        if failure_policy is RevocationFailurePolicy.AUTO:
            raise ValueError("AccessGate needs a concrete failure policy")
        self._registry = registry
        self._audit = audit
        self.failure_policy = failure_policy

    def check(
        self,
        pairwise_id: str | None = None,
        global_id: str | None = None,
        ip_address: str | None = None,
        resource: str = "protected",
    ) -> GateDecision:
        start = time.perf_counter()
        checks = [(RevocationScope.PAIRWISE, pairwise_id), (RevocationScope.GLOBAL, global_id)]
        actor = global_id or pairwise_id or "anonymous"

        try:
            for scope, subject in checks:
                if subject and self._registry.is_revoked(subject, scope):
                    latency = (time.perf_counter() - start) * 1000
                    logger.info(f"Access denied for {short_id(subject)}: {scope.value} revocation")
                    self._audit.record(
                        AuditAction.ACCESS_DENIED,
                        actor=actor,
                        resource=resource,
                        success=False,
                        metadata={"reason": scope.value, "pairwise_id": pairwise_id},
                        ip_address=ip_address,
                    )
                    return GateDecision(allowed=False, code=ErrorCode.REVOKED, reason=scope.value, latency_ms=latency)
        except StoreUnavailableError as e:
            latency = (time.perf_counter() - start) * 1000
            return self._on_store_failure(e, actor, resource, pairwise_id, ip_address, latency)

        return GateDecision(allowed=True, latency_ms=(time.perf_counter() - start) * 1000)

    def _on_store_failure(
        self,
        error: StoreUnavailableError,
        actor: str,
        resource: str,
        pairwise_id: str | None,
        ip_address: str | None,
        latency: float,
    ) -> GateDecision:
        if self.failure_policy is RevocationFailurePolicy.FAIL_OPEN:
            logger.error(f"Revocation store unavailable, FAILING OPEN for {short_id(actor)}: {error.message}")
            self._audit.record(
                AuditAction.ACCESS_BYPASSED,
                actor=actor,
                resource=resource,
                success=True,
                metadata={"reason": "revocation store unavailable", "pairwise_id": pairwise_id},
                ip_address=ip_address,
            )
            return GateDecision(allowed=True, latency_ms=latency)

        logger.error(f"Revocation store unavailable, denying request: {error.message}")
        self._audit.record(
            AuditAction.ACCESS_DENIED,
            actor=actor,
            resource=resource,
            success=False,
            metadata={"reason": "revocation store unavailable", "pairwise_id": pairwise_id},
            ip_address=ip_address,
        )
        return GateDecision(
            allowed=False,
            code=ErrorCode.BACKING_STORE_UNAVAILABLE,
            reason="store_unavailable",
            retryable=True,
            latency_ms=latency,
        )
