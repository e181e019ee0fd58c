# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Single-use challenge cache for WebAuthn ceremonies.

A challenge is issued under an unguessable session token and can be
consumed exactly once: ``consume`` is a get-and-delete on the backend, so
of two concurrent completions on the same token only one sees the record.
Records carry their own expiry in addition to the backend TTL so an entry
that outlives its TTL on a lagging backend is still rejected.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum

from ..storage.backends import KeyValueBackend
from .webauthn import b64url_decode, b64url_encode

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "challenge:"
CHALLENGE_BYTES = 32


class ChallengePurpose(str, Enum):
    ENROLLMENT = "enrollment"
    AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class ChallengeRecord:
    """An issued challenge awaiting its signed response."""

    session_token: str
    challenge: bytes
    purpose: ChallengePurpose
    created_at: float
    expires_at: float
    global_id: str | None = None

    @property
    def challenge_b64(self) -> str:
        return b64url_encode(self.challenge)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        d = asdict(self)
        d["challenge"] = self.challenge_b64
        d["purpose"] = self.purpose.value
        return json.dumps(d)

    @classmethod
    def from_json(cls, raw: str) -> ChallengeRecord:
        d = json.loads(raw)
        d["challenge"] = b64url_decode(d["challenge"], "challenge")
        d["purpose"] = ChallengePurpose(d["purpose"])
        return cls(**d)


class ChallengeCache:
    """Issue and consume challenges.

    Args:
        backend: Key-value backend (challenges are namespaced under ``challenge:``).
        timeout_seconds: Challenge lifetime.
        clock: Wall-clock time source (injectable for tests).
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        timeout_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def timeout_seconds(self) -> int:
        return self._timeout

    def issue(self, purpose: ChallengePurpose, global_id: str | None = None) -> ChallengeRecord:
        now = self._clock()
        record = ChallengeRecord(
            session_token=secrets.token_urlsafe(32),
            challenge=secrets.token_bytes(CHALLENGE_BYTES),
            purpose=purpose,
            created_at=now,
            expires_at=now + self._timeout,
            global_id=global_id,
        )
        self._backend.set(CHALLENGE_PREFIX + record.session_token, record.to_json(), ttl_seconds=self._timeout)
        return record

    def peek(self, session_token: str) -> ChallengeRecord | None:
        """Read a live challenge without consuming it."""
        raw = self._backend.get(CHALLENGE_PREFIX + session_token)
        if raw is None:
            return None
        record = ChallengeRecord.from_json(raw)
        return None if record.is_expired(self._clock()) else record

    def consume(self, session_token: str) -> ChallengeRecord | None:
        """Atomically take the challenge for ``session_token``.

        Returns:
            The record, or None if it was never issued, already consumed or expired.
        """
        raw = self._backend.get_and_delete(CHALLENGE_PREFIX + session_token)
        if raw is None:
            return None
        record = ChallengeRecord.from_json(raw)
        if record.is_expired(self._clock()):
            logger.debug("Consumed challenge had already expired")
            return None
        return record

    def cleanup_expired(self) -> int:
        """Delete expired challenges. Returns number removed.

        Backend TTLs already evict these; this only reclaims space early.
        """
        now = self._clock()
        removed = 0
        for key in self._backend.scan(CHALLENGE_PREFIX):
            raw = self._backend.get(key)
            if raw is None:
                continue
            if ChallengeRecord.from_json(raw).is_expired(now) and self._backend.delete(key):
                removed += 1
        if removed:
            logger.debug(f"Cleaned up {removed} expired challenges")
        return removed
