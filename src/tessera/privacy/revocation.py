# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Real-time revocation registry (the kill switch).

A revocation is a marker key with a TTL in the shared key-value backend:

    revoked:pairwise:{pairwise_id}   one relying party loses access
    killswitch:global:{global_id}    every relying party loses access

The presence of a live marker is the only thing that makes a subject
revoked. Nothing is cached in-process, so a revoke is visible to the very
next check. Revoking again replaces the marker and restarts its TTL.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..core.exceptions import ValidationException
from ..core.logging import short_id
from ..storage.backends import NO_EXPIRY, KeyValueBackend
from .audit import AuditAction, AuditTrail

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Revoked by operator"


class RevocationScope(str, Enum):
    PAIRWISE = "pairwise"
    GLOBAL = "global"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]


_PREFIXES = {
    RevocationScope.PAIRWISE: "revoked:pairwise:",
    RevocationScope.GLOBAL: "killswitch:global:",
}


@dataclass(frozen=True)
class RevocationEntry:
    subject_key: str
    scope: RevocationScope
    reason: str
    revoked_at: float
    ttl_seconds: int
    revoked_by: str | None = None

    def to_json(self) -> str:
        return json.dumps({"reason": self.reason, "revoked_at": self.revoked_at, "revoked_by": self.revoked_by})


@dataclass(frozen=True)
class RevocationStatus:
    subject_key: str
    scope: RevocationScope
    revoked: bool
    reason: str | None = None
    revoked_at: float | None = None
    remaining_ttl_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"subject_key": self.subject_key, "scope": self.scope.value, "revoked": self.revoked}
        if self.revoked:
            d["reason"] = self.reason
            d["revoked_at"] = self.revoked_at
            d["remaining_ttl_seconds"] = self.remaining_ttl_seconds
        return d


def _validate(subject_key: str, scope: RevocationScope | str) -> RevocationScope:
    if not isinstance(subject_key, str) or not subject_key.strip():
        raise ValidationException("subject key is required", field="subject_key")
    try:
        return RevocationScope(scope)
    except ValueError as e:
        raise ValidationException("scope must be 'pairwise' or 'global'", field="scope", value=scope) from e


class RevocationRegistry:
    """Revoke, restore and query revocation markers.

    Store outages propagate as StoreUnavailableError; the AccessGate decides
    what an outage means for a request.

    Args:
        backend: Shared key-value backend.
        audit: Trail receiving one event per revoke and restore.
        default_ttl_seconds: Marker lifetime when revoke() is not given one.
    """

    def __init__(self, backend: KeyValueBackend, audit: AuditTrail, default_ttl_seconds: int = 300):
        self._backend = backend
        self._audit = audit
        self._default_ttl = default_ttl_seconds

    def revoke(
        self,
        subject_key: str,
        scope: RevocationScope | str,
        ttl_seconds: int | None = None,
        reason: str | None = None,
        actor: str = "system",
    ) -> RevocationEntry:
        scope = _validate(subject_key, scope)
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValidationException("ttl_seconds must be positive", field="ttl_seconds", value=ttl)

        entry = RevocationEntry(
            subject_key=subject_key,
            scope=scope,
            reason=reason or DEFAULT_REASON,
            revoked_at=time.time(),
            ttl_seconds=ttl,
            revoked_by=actor,
        )
        self._backend.set(scope.prefix + subject_key, entry.to_json(), ttl_seconds=ttl)

        logger.warning(f"Revoked {scope.value} subject {short_id(subject_key)} for {ttl}s: {entry.reason}")
        self._audit.record(
            AuditAction.REVOKE,
            actor=actor,
            resource=subject_key,
            success=True,
            metadata={"scope": scope.value, "reason": entry.reason, "ttl_seconds": ttl},
        )
        return entry

    def restore(self, subject_key: str, scope: RevocationScope | str, actor: str = "system") -> bool:
        """Remove a revocation marker.

        Returns:
            True if the subject was revoked; False if there was nothing to restore.
        """
        scope = _validate(subject_key, scope)
        removed = self._backend.delete(scope.prefix + subject_key)

        if removed:
            logger.info(f"Restored {scope.value} subject {short_id(subject_key)}")
        self._audit.record(
            AuditAction.RESTORE,
            actor=actor,
            resource=subject_key,
            success=True,
            metadata={"scope": scope.value, "was_revoked": removed},
        )
        return removed

    def is_revoked(self, subject_key: str, scope: RevocationScope | str) -> bool:
        scope = _validate(subject_key, scope)
        return self._backend.get(scope.prefix + subject_key) is not None

    def get_entry(self, subject_key: str, scope: RevocationScope | str) -> dict[str, Any] | None:
        scope = _validate(subject_key, scope)
        raw = self._backend.get(scope.prefix + subject_key)
        return json.loads(raw) if raw else None

    def status(self, subject_key: str, scope: RevocationScope | str) -> RevocationStatus:
        scope = _validate(subject_key, scope)
        key = scope.prefix + subject_key
        raw = self._backend.get(key)
        if raw is None:
            return RevocationStatus(subject_key=subject_key, scope=scope, revoked=False)

        data = json.loads(raw)
        remaining = self._backend.ttl(key)
        return RevocationStatus(
            subject_key=subject_key,
            scope=scope,
            revoked=True,
            reason=data.get("reason"),
            revoked_at=data.get("revoked_at"),
            remaining_ttl_seconds=None if remaining in (None, NO_EXPIRY) else remaining,
        )
