# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Credential store: one hardware-bound credential per global identity.

Records live under three keys in the key-value backend:

- ``credential:{global_id}``      the JSON record
- ``credential-id:{credential_id}`` index to the owning global id
- ``fingerprint:{fingerprint}``   index used for duplicate-device detection

Uniqueness of the indexes is enforced with ``set_if_absent`` so two
concurrent enrollments from the same device cannot both succeed. A create
that fails part way releases the keys it already claimed. The
signature counter is only ever written through ``compare_and_set``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from ..core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    StoreUnavailableError,
    WebAuthnVerificationError,
)
from ..core.logging import short_id
from ..storage.backends import KeyValueBackend
from .webauthn import b64url_decode, b64url_encode

logger = logging.getLogger(__name__)

RECORD_PREFIX = "credential:"
CREDENTIAL_ID_PREFIX = "credential-id:"
FINGERPRINT_PREFIX = "fingerprint:"


@dataclass
class CredentialRecord:
    """A persisted authenticator credential."""

    global_id: str
    credential_id: str  # base64url
    public_key: bytes  # CBOR COSE_Key
    algorithm: int
    sign_count: int
    hardware_fingerprint: str
    aaguid: str | None = None
    device_type: str = "Unknown"
    device_name: str = "Unknown Device"
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def public_key_b64(self) -> str:
        return b64url_encode(self.public_key)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["public_key"] = self.public_key_b64
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> CredentialRecord:
        data = json.loads(raw)
        data["public_key"] = b64url_decode(data["public_key"], "public_key")
        return cls(**data)

    def descriptor(self) -> dict[str, Any]:
        """PublicKeyCredentialDescriptor for ``allowCredentials``."""
        return {"type": "public-key", "id": self.credential_id}


def check_sign_count(stored: int, presented: int) -> None:
    """Reject a non-increasing signature counter.

    An authenticator that reports 0 on every use does not implement
    counters; when both values are 0 the check is skipped.

    Raises:
        WebAuthnVerificationError: REPLAY_DETECTED when presented <= stored.
    """
    if stored == 0 and presented == 0:
        logger.warning("Authenticator does not support signature counters; replay check skipped")
        return
    if presented <= stored:
        raise WebAuthnVerificationError(
            ErrorCode.REPLAY_DETECTED,
            f"signature counter {presented} not greater than stored {stored}",
            {"stored": stored, "presented": presented},
        )


class CredentialStore:
    """Credential persistence on top of a :class:`KeyValueBackend`.

    Backend outages surface as StoreUnavailableError.
    """

    def __init__(self, backend: KeyValueBackend):
        self._backend = backend

    def create(self, record: CredentialRecord) -> CredentialRecord:
        """Persist a new credential.

        Raises:
            ConflictError: If the fingerprint, credential id or global id already exists.
        """
        gid = record.global_id
        claims = [
            (FINGERPRINT_PREFIX + record.hardware_fingerprint, gid, "Device already enrolled"),
            (CREDENTIAL_ID_PREFIX + record.credential_id, gid, "Credential already enrolled"),
            (RECORD_PREFIX + gid, record.to_json(), "Identity already exists"),
        ]

        claimed: list[str] = []
        try:
            for key, value, conflict in claims:
                if not self._backend.set_if_absent(key, value):
                    owner = gid if key.startswith(RECORD_PREFIX) else self._backend.get(key)
                    raise ConflictError(conflict, existing_id=owner)
                claimed.append(key)
        except (ConflictError, StoreUnavailableError):
            self._release(claimed)
            raise

        logger.info(f"Stored credential for {short_id(gid)}")
        return record

    def _release(self, keys: list[str]) -> None:
        """Undo a partial create, newest key first."""
        for key in reversed(keys):
            try:
                self._backend.delete(key)
            except StoreUnavailableError as e:
                logger.error(f"Could not release {key.split(':', 1)[0]} key after failed create: {e.message}")

    def get(self, global_id: str) -> CredentialRecord | None:
        raw = self._backend.get(RECORD_PREFIX + global_id)
        return CredentialRecord.from_json(raw) if raw else None

    def require(self, global_id: str) -> CredentialRecord:
        """Like get() but raises NotFoundError."""
        record = self.get(global_id)
        if record is None:
            raise NotFoundError("Credential", short_id(global_id))
        return record

    def find_by_fingerprint(self, fingerprint: str) -> CredentialRecord | None:
        gid = self._backend.get(FINGERPRINT_PREFIX + fingerprint)
        return self.get(gid) if gid else None

    def find_by_credential_id(self, credential_id: str) -> CredentialRecord | None:
        gid = self._backend.get(CREDENTIAL_ID_PREFIX + credential_id)
        return self.get(gid) if gid else None

    def update_counter(self, global_id: str, presented: int) -> CredentialRecord:
        """Advance the signature counter with a conditional write.

        The replay check runs against the freshly read record, and the write
        only lands if nobody changed the record in between, so two assertions
        carrying the same counter cannot both succeed.

        Raises:
            NotFoundError: If the credential no longer exists.
            WebAuthnVerificationError: REPLAY_DETECTED on a stale counter or a lost race.
        """
        key = RECORD_PREFIX + global_id
        raw = self._backend.get(key)
        if raw is None:
            raise NotFoundError("Credential", short_id(global_id))

        record = CredentialRecord.from_json(raw)
        check_sign_count(record.sign_count, presented)

        updated = replace(record, sign_count=presented, updated_at=time.time())
        if not self._backend.compare_and_set(key, raw, updated.to_json()):
            raise WebAuthnVerificationError(ErrorCode.REPLAY_DETECTED, "concurrent counter update")
        return updated

    def update_device_metadata(self, global_id: str, device_type: str, device_name: str) -> CredentialRecord | None:
        """Refresh best-effort device info. Returns None if the write lost a race."""
        key = RECORD_PREFIX + global_id
        raw = self._backend.get(key)
        if raw is None:
            raise NotFoundError("Credential", short_id(global_id))

        record = CredentialRecord.from_json(raw)
        updated = replace(record, device_type=device_type, device_name=device_name, updated_at=time.time())
        if not self._backend.compare_and_set(key, raw, updated.to_json()):
            return None
        return updated

    def delete(self, global_id: str) -> bool:
        """Remove a credential and its indexes. Irreversible.

        Indexes go first and the record last, so a delete interrupted by a
        store outage leaves the record in place and can simply be repeated.

        Returns:
            True if a record was deleted.
        """
        record = self.get(global_id)
        if record is None:
            return False
        self._backend.delete(CREDENTIAL_ID_PREFIX + record.credential_id)
        self._backend.delete(FINGERPRINT_PREFIX + record.hardware_fingerprint)
        self._backend.delete(RECORD_PREFIX + global_id)
        logger.info(f"Deleted credential for {short_id(global_id)}")
        return True

    def count(self) -> int:
        return len(self._backend.scan(RECORD_PREFIX))
