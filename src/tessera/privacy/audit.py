# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Append-only audit trail for identity events.

Every security-relevant outcome (enrollment, authentication, revocation,
restoration, denied access, disclosure) produces exactly one AuditEvent.

Hash-chain integrity: each event stores the SHA-256 hash of the previous
event, so editing or dropping a line breaks ``verify_chain``.

Metadata sanitization: MetadataSanitizer scrubs key material and PII-shaped
values from metadata before an event is hashed and stored.

Recording never raises. A failing backend is logged at ERROR and counted
in ``AuditTrail.failures``; the identity operation that triggered the
event carries on.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from ..core.config import CoreSettings

logger = logging.getLogger(__name__)

# =============================================================================
# METADATA SANITIZATION
# =============================================================================

DEFAULT_PII_PATTERNS: dict[str, re.Pattern] = {
    "email": re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b"),
    "phone": re.compile(r"(?<![\w:])\+?\d{1,3}[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
}

DEFAULT_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "token",
        "private_key",
        "public_key",
        "signature",
        "authenticator_data",
        "client_data",
        "attestation",
        "assertion",
        "challenge",
        "salt",
    }
)

# Pseudonymous identifiers that the trail exists to record
DEFAULT_PRESERVE_KEYS: frozenset[str] = frozenset({"global_id", "pairwise_id", "relying_party_id", "scope", "reason"})

REDACTED_PLACEHOLDER = "[REDACTED]"
REDACTED_PII_PLACEHOLDER = "[PII_REDACTED]"


class MetadataSanitizer:
    """Redacts sensitive keys and scrubs PII patterns from event metadata.

    Nested dicts are sanitized recursively; strings inside lists are scrubbed.
    """

    def __init__(
        self,
        sensitive_keys: frozenset[str] | None = None,
        pii_patterns: dict[str, re.Pattern] | None = None,
        preserve_keys: frozenset[str] | None = None,
    ):
        self.sensitive_keys = sensitive_keys or DEFAULT_SENSITIVE_KEYS
        self.pii_patterns = pii_patterns or DEFAULT_PII_PATTERNS
        self.preserve_keys = DEFAULT_PRESERVE_KEYS if preserve_keys is None else preserve_keys

    def sanitize(self, metadata: dict[str, Any]) -> dict[str, Any]:
        clean: dict[str, Any] = {}
        for key, value in metadata.items():
            if key.lower() in self.preserve_keys:
                clean[key] = value
            elif self._is_sensitive_key(key):
                clean[key] = REDACTED_PLACEHOLDER
            elif isinstance(value, str):
                clean[key] = self._scrub(value)
            elif isinstance(value, dict):
                clean[key] = self.sanitize(value)
            elif isinstance(value, list):
                clean[key] = [self._scrub(v) if isinstance(v, str) else v for v in value]
            else:
                clean[key] = value
        return clean

    def _is_sensitive_key(self, key: str) -> bool:
        normalized = key.lower().replace("-", "_")
        return any(s in normalized for s in self.sensitive_keys)

    def _scrub(self, value: str) -> str:
        for pattern in self.pii_patterns.values():
            value = pattern.sub(REDACTED_PII_PLACEHOLDER, value)
        return value


_default_sanitizer = MetadataSanitizer()


# =============================================================================
# EVENTS
# =============================================================================


class AuditAction(str, Enum):
    """Auditable identity actions."""

    ENROLLMENT_SUCCESS = "enrollment_success"
    ENROLLMENT_FAILURE = "enrollment_failure"
    AUTHENTICATION_SUCCESS = "authentication_success"
    AUTHENTICATION_FAILURE = "authentication_failure"
    REVOKE = "revoke"
    RESTORE = "restore"
    ACCESS_DENIED = "access_denied"
    ACCESS_BYPASSED = "access_bypassed"  # revocation store down, fail-open
    DISCLOSURE = "disclosure"
    ACCOUNT_DELETED = "account_deleted"


@dataclass
class AuditEvent:
    """One entry in the audit chain.

    ``actor`` is the global id or operator performing the action; ``resource``
    is what it acted on (a pairwise id, a relying party, a session).
    """

    action: AuditAction
    actor: str
    resource: str
    success: bool
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    previous_hash: str | None = None
    event_hash: str = ""

    def __post_init__(self):
        if self.metadata:
            self.metadata = _default_sanitizer.sanitize(self.metadata)
        if not self.event_hash:
            self.event_hash = self.compute_hash()

    def compute_hash(self) -> str:
        body = self.to_dict()
        body.pop("event_hash")
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def chain_to(self, previous_hash: str | None) -> None:
        self.previous_hash = previous_hash
        self.event_hash = self.compute_hash()

    def verify_hash(self) -> bool:
        return self.event_hash == self.compute_hash()

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "action": self.action.value,
            "actor": self.actor,
            "resource": self.resource,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "metadata": self.metadata,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "previous_hash": self.previous_hash,
            "event_hash": self.event_hash,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEvent:
        return cls(
            action=AuditAction(data["action"]),
            actor=data["actor"],
            resource=data["resource"],
            success=data.get("success", True),
            event_id=data["event_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            previous_hash=data.get("previous_hash"),
            event_hash=data.get("event_hash", ""),
        )

    @classmethod
    def from_json(cls, raw: str) -> AuditEvent:
        return cls.from_dict(json.loads(raw))


class ChainVerificationError(Exception):
    """Describes where an audit chain stops verifying."""

    def __init__(self, message: str, event_index: int, event_id: str):
        self.message = message
        self.event_index = event_index
        self.event_id = event_id
        super().__init__(f"{message} at index {event_index} (event_id: {event_id})")


def verify_chain(events: list[AuditEvent]) -> tuple[bool, ChainVerificationError | None]:
    """Check the linkage and self-hash of every event, oldest first.

    Returns:
        Tuple of (is_valid, error_or_none)
    """
    previous: str | None = None
    for i, event in enumerate(events):
        if event.previous_hash != previous:
            reason = "Genesis event must have null previous_hash" if i == 0 else "Chain broken: previous_hash mismatch"
            return False, ChainVerificationError(reason, i, event.event_id)
        if not event.verify_hash():
            return False, ChainVerificationError("Event hash mismatch (data may be tampered)", i, event.event_id)
        previous = event.event_hash
    return True, None


# =============================================================================
# BACKENDS
# =============================================================================


class AuditBackend(Protocol):
    """Storage for audit events. ``write`` chains the event to its predecessor."""

    def write(self, event: AuditEvent) -> None: ...

    def all_events(self) -> list[AuditEvent]: ...


def _matches(event: AuditEvent, action: AuditAction | None, actor: str | None, resource: str | None) -> bool:
    if action is not None and event.action is not action:
        return False
    if actor is not None and event.actor != actor:
        return False
    if resource is not None and event.resource != resource:
        return False
    return True


class InMemoryAuditBackend:
    """Thread-safe, non-persistent audit log for development and tests."""

    def __init__(self, max_events: int = 10000):
        self._events: list[AuditEvent] = []
        self._max_events = max_events
        self._lock = threading.Lock()
        self._last_hash: str | None = None

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            event.chain_to(self._last_hash)
            self._events.append(event)
            self._last_hash = event.event_hash
            # Trimming drops the genesis; verify_chain then only holds per window
            if len(self._events) > self._max_events:
                self._events = self._events[-self._max_events :]

    def all_events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._last_hash = None


class FileAuditBackend:
    """JSON-lines audit log, one event per line.

    The file is read once on startup; events are then served from memory and
    appended to both. Lines added by another process are picked up by tailing
    from the last read offset, and a file that shrank is re-read in full. The
    last hash comes from the existing file so the chain continues across
    restarts.
    """

    def __init__(self, log_path: str | Path):
        self._log_path = Path(log_path)
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []
        self._offset = 0
        self._last_hash: str | None = None
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._tail()

    def _tail(self) -> None:
        """Load lines written since the last read. Caller holds the lock or is __init__."""
        if not self._log_path.exists():
            return
        size = self._log_path.stat().st_size
        if size == self._offset:
            return
        if size < self._offset:
            logger.warning(f"Audit log {self._log_path} shrank; reloading")
            self._events = []
            self._offset = 0
            self._last_hash = None
        with open(self._log_path, "rb") as f:
            f.seek(self._offset)
            for raw in f:
                if not raw.endswith(b"\n"):
                    # partial line from a concurrent writer; read it next time
                    break
                self._offset += len(raw)
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    self._events.append(AuditEvent.from_json(line))
                except (json.JSONDecodeError, KeyError, ValueError):
                    logger.warning(f"Skipping malformed audit line in {self._log_path}")
        if self._events:
            self._last_hash = self._events[-1].event_hash

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            self._tail()
            event.chain_to(self._last_hash)
            line = (event.to_json() + "\n").encode("utf-8")
            with open(self._log_path, "ab") as f:
                f.write(line)
            self._offset += len(line)
            self._events.append(event)
            self._last_hash = event.event_hash

    def all_events(self) -> list[AuditEvent]:
        with self._lock:
            self._tail()
            return list(self._events)


def create_audit_backend(settings: CoreSettings) -> AuditBackend:
    if settings.audit_log_path:
        logger.info(f"Audit trail writing to {settings.audit_log_path}")
        return FileAuditBackend(settings.audit_log_path)
    return InMemoryAuditBackend()


# =============================================================================
# TRAIL
# =============================================================================


class AuditTrail:
    """Records audit events without ever failing the caller.

    Args:
        backend: Where events go.
        enabled: When False, record() is a no-op returning None.
    """

    def __init__(self, backend: AuditBackend | None = None, enabled: bool = True):
        self.backend: AuditBackend = backend if backend is not None else InMemoryAuditBackend()
        self.enabled = enabled
        self._failures = 0
        self._lock = threading.Lock()

    @property
    def failures(self) -> int:
        """Number of events that could not be written."""
        with self._lock:
            return self._failures

    def record(
        self,
        action: AuditAction,
        actor: str,
        resource: str,
        success: bool,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEvent | None:
        """Append one event. Returns the event, or None if disabled or the write failed."""
        if not self.enabled:
            return None
        try:
            event = AuditEvent(
                action=action,
                actor=actor,
                resource=resource,
                success=success,
                metadata=metadata or {},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.backend.write(event)
            return event
        except Exception:
            with self._lock:
                self._failures += 1
            logger.exception(f"AUDIT WRITE FAILED for action={action.value} (total failures: {self.failures})")
            return None

    def query(
        self,
        action: AuditAction | None = None,
        actor: str | None = None,
        resource: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Matching events, most recent first."""
        results = []
        for event in reversed(self.backend.all_events()):
            if _matches(event, action, actor, resource):
                results.append(event)
                if len(results) >= limit:
                    break
        return results

    def count(self, action: AuditAction | None = None, success: bool | None = None) -> int:
        return sum(
            1
            for e in self.backend.all_events()
            if _matches(e, action, None, None) and (success is None or e.success == success)
        )

    def consent_history(self, global_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """Disclosure decisions made for ``global_id``, most recent first."""
        return [
            {
                "relying_party_id": e.resource,
                "timestamp": e.timestamp.isoformat(),
                "disclosed_fields": e.metadata.get("disclosed_fields", []),
                "requested_fields": e.metadata.get("requested_fields", []),
                "consented_fields": e.metadata.get("consented_fields"),
            }
            for e in self.query(action=AuditAction.DISCLOSURE, actor=global_id, limit=limit)
        ]

    def verify_chain(self) -> tuple[bool, ChainVerificationError | None]:
        return verify_chain(self.backend.all_events())
