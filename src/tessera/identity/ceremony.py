# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Enrollment and authentication ceremonies.

Each ceremony is a begin/complete pair joined by a single-use challenge:

    AWAITING_CHALLENGE -> CHALLENGE_ISSUED -> AWAITING_ATTESTATION
        -> VERIFYING -> VERIFIED | FAILED

``begin_*`` issues the challenge and leaves the attempt in
AWAITING_ATTESTATION. ``complete_*`` resumes there, consumes the challenge
and verifies the signed response. Every failure is terminal for the
attempt and leaves stored credentials untouched; a retry needs a new
challenge.

Results are returned as CeremonyResult, never raised. The specific failure
reason is audited; callers only get the ErrorCode.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core.config import CoreSettings
from ..core.exceptions import (
    AccessRevokedError,
    ErrorCode,
    NotFoundError,
    TesseraException,
    ValidationException,
    WebAuthnVerificationError,
)
from ..core.logging import short_id
from ..core.response import TesseraResponse, err, ok
from ..privacy.audit import AuditAction, AuditTrail
from ..privacy.gate import AccessGate
from .challenges import ChallengeCache, ChallengePurpose, ChallengeRecord
from .credentials import CredentialRecord, CredentialStore
from .crypto import CryptoProvider, DefaultCryptoProvider
from .device import detect_device_type, device_name
from .webauthn import (
    ParsedRegistration,
    b64url_encode,
    parse_assertion,
    parse_registration,
    verify_assertion,
    verify_challenge_binding,
    verify_registration,
)

logger = logging.getLogger(__name__)

GLOBAL_ID_PREFIX = "did:tessera:"
FINGERPRINT_LENGTH = 32


class CeremonyState(str, Enum):
    AWAITING_CHALLENGE = "awaiting_challenge"
    CHALLENGE_ISSUED = "challenge_issued"
    AWAITING_ATTESTATION = "awaiting_attestation"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    FAILED = "failed"


_TRANSITIONS: dict[CeremonyState, frozenset[CeremonyState]] = {
    CeremonyState.AWAITING_CHALLENGE: frozenset({CeremonyState.CHALLENGE_ISSUED, CeremonyState.FAILED}),
    CeremonyState.CHALLENGE_ISSUED: frozenset({CeremonyState.AWAITING_ATTESTATION, CeremonyState.FAILED}),
    CeremonyState.AWAITING_ATTESTATION: frozenset({CeremonyState.VERIFYING, CeremonyState.FAILED}),
    CeremonyState.VERIFYING: frozenset({CeremonyState.VERIFIED, CeremonyState.FAILED}),
    CeremonyState.VERIFIED: frozenset(),
    CeremonyState.FAILED: frozenset(),
}


class IllegalTransitionError(TesseraException):
    """A ceremony attempt was moved to a state it cannot reach."""

    def __init__(self, current: CeremonyState, target: CeremonyState):
        super().__init__(f"Illegal ceremony transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass
class CeremonyAttempt:
    """One pass through the ceremony state machine."""

    purpose: ChallengePurpose
    state: CeremonyState = CeremonyState.AWAITING_CHALLENGE
    history: list[CeremonyState] = field(default_factory=list)
    failure_code: ErrorCode | None = None
    failure_reason: str | None = None

    def __post_init__(self):
        if not self.history:
            self.history.append(self.state)

    @classmethod
    def resume(cls, purpose: ChallengePurpose) -> CeremonyAttempt:
        """An attempt picking up at the completion half of a ceremony."""
        return cls(purpose=purpose, state=CeremonyState.AWAITING_ATTESTATION)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, target: CeremonyState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.state, target)
        self.state = target
        self.history.append(target)

    def fail(self, code: ErrorCode, reason: str) -> None:
        self.advance(CeremonyState.FAILED)
        self.failure_code = code
        self.failure_reason = reason


@dataclass(frozen=True)
class ClientContext:
    """Request facts that feed device fingerprinting and the audit trail."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class CeremonyResult:
    success: bool
    state: CeremonyState
    data: dict[str, Any] = field(default_factory=dict)
    code: ErrorCode | None = None
    reason: str | None = None
    retryable: bool = False
    global_id: str | None = None
    attempt: CeremonyAttempt | None = None

    def to_response(self) -> TesseraResponse:
        if self.success:
            return ok(self.data)
        return err(self.code or ErrorCode.MALFORMED_REQUEST, self.reason, retryable=self.retryable)


def compute_hardware_fingerprint(
    credential_id_b64: str,
    client: ClientContext,
    crypto: CryptoProvider,
) -> str:
    """Best-effort device fingerprint: sha256(credential_id | ip | user_agent)[:32].

    This is a heuristic. The same physical device behind a new IP address or
    browser produces a different fingerprint.
    """
    material = f"{credential_id_b64}|{client.ip_address or 'unknown'}|{client.user_agent or 'unknown'}"
    return crypto.sha256(material.encode("utf-8")).hex()[:FINGERPRINT_LENGTH]


def mint_global_id(public_key_b64: str, fingerprint: str, salt: str, crypto: CryptoProvider) -> str:
    """did:tessera:<sha256(public_key : fingerprint : salt)>"""
    digest = crypto.sha256(f"{public_key_b64}:{fingerprint}:{salt}".encode())
    return GLOBAL_ID_PREFIX + digest.hex()


def _require_token(session_token: Any) -> str:
    if not isinstance(session_token, str) or not session_token.strip():
        raise ValidationException("session_token is required", field="session_token")
    return session_token


class CeremonyService:
    """Runs WebAuthn enrollment and authentication against the stores.

    Args:
        settings: Relying party, verification and secret settings.
        credentials: Credential store.
        challenges: Challenge cache.
        audit: Audit trail (one event per completed ceremony).
        crypto: Crypto provider (defaults to DefaultCryptoProvider).
        gate: Access gate consulted for the global id before any
            authentication work. None disables the check.
    """

    def __init__(
        self,
        settings: CoreSettings,
        credentials: CredentialStore,
        challenges: ChallengeCache,
        audit: AuditTrail,
        crypto: CryptoProvider | None = None,
        gate: AccessGate | None = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.challenges = challenges
        self.audit = audit
        self.crypto = crypto or DefaultCryptoProvider()
        self.gate = gate

    # ------------------------------------------------------------------
    # ENROLLMENT
    # ------------------------------------------------------------------

    def begin_enrollment(self) -> CeremonyResult:
        attempt = CeremonyAttempt(purpose=ChallengePurpose.ENROLLMENT)
        try:
            challenge = self.challenges.issue(ChallengePurpose.ENROLLMENT)
        except TesseraException as e:
            return self._failed(attempt, e, None, None)

        attempt.advance(CeremonyState.CHALLENGE_ISSUED)
        attempt.advance(CeremonyState.AWAITING_ATTESTATION)
        options = {
            "challenge": challenge.challenge_b64,
            "rp": {"id": self.settings.rp_id, "name": self.settings.rp_name},
            "user": {
                "id": b64url_encode(secrets.token_bytes(16)),
                "name": "tessera-user",
                "displayName": "Tessera User",
            },
            "pubKeyCredParams": [{"type": "public-key", "alg": alg} for alg in self.settings.supported_algorithms],
            "timeout": self.challenges.timeout_seconds * 1000,
            "attestation": "none",
            "authenticatorSelection": {
                "userVerification": self.settings.effective_user_verification.value,
                "residentKey": "preferred",
            },
        }
        return CeremonyResult(
            success=True,
            state=attempt.state,
            data={"session_token": challenge.session_token, "options": options},
            attempt=attempt,
        )

    def complete_enrollment(
        self,
        session_token: Any,
        credential: Any,
        client: ClientContext | None = None,
    ) -> CeremonyResult:
        client = client or ClientContext()
        attempt = CeremonyAttempt.resume(ChallengePurpose.ENROLLMENT)
        try:
            # Malformed input is rejected before the challenge is touched
            token = _require_token(session_token)
            registration = parse_registration(credential)
            if registration.algorithm not in self.settings.supported_algorithms:
                raise ValidationException(
                    "Unsupported algorithm", field="attestationObject", value=registration.algorithm
                )

            attempt.advance(CeremonyState.VERIFYING)
            challenge = self._consume(token, ChallengePurpose.ENROLLMENT)
            aaguid, sign_count = self._verify_registration(registration, challenge)

            credential_id = b64url_encode(registration.credential_id)
            fingerprint = compute_hardware_fingerprint(credential_id, client, self.crypto)
            public_key_b64 = b64url_encode(registration.public_key)
            global_id = mint_global_id(public_key_b64, fingerprint, self.settings.did_salt or "", self.crypto)

            record = CredentialRecord(
                global_id=global_id,
                credential_id=credential_id,
                public_key=registration.public_key,
                algorithm=registration.algorithm,
                sign_count=sign_count,
                hardware_fingerprint=fingerprint,
                aaguid=aaguid,
                device_type=detect_device_type(client.user_agent),
                device_name=device_name(client.user_agent),
            )
            self.credentials.create(record)
        except TesseraException as e:
            return self._failed(attempt, e, client, AuditAction.ENROLLMENT_FAILURE)

        attempt.advance(CeremonyState.VERIFIED)
        logger.info(f"Enrolled {short_id(global_id)} ({record.device_name})")
        self.audit.record(
            AuditAction.ENROLLMENT_SUCCESS,
            actor=global_id,
            resource=global_id,
            success=True,
            metadata={
                "device_type": record.device_type,
                "device_name": record.device_name,
                "aaguid": record.aaguid,
                "attestation_format": registration.attestation_format,
            },
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return CeremonyResult(
            success=True,
            state=attempt.state,
            data={
                "global_id": global_id,
                "credential_id": credential_id,
                "device_type": record.device_type,
                "device_name": record.device_name,
            },
            global_id=global_id,
            attempt=attempt,
        )

    def _verify_registration(self, registration: ParsedRegistration, challenge: ChallengeRecord) -> tuple[str, int]:
        """Verify the attestation; returns (AAGUID, initial signature counter)."""
        verify_challenge_binding(registration.client_data, challenge.challenge, self.crypto)
        verified = verify_registration(
            registration,
            challenge=challenge.challenge,
            rp_id=self.settings.rp_id,
            origin=self.settings.origin,
            user_verification=self.settings.effective_user_verification,
            algorithms=self.settings.supported_algorithms,
        )
        if verified.credential_id != registration.credential_id:
            raise WebAuthnVerificationError(ErrorCode.SIGNATURE_INVALID, "credential id mismatch")

        aaguid = verified.aaguid.lower()
        if self.settings.enforce_aaguid_allowlist:
            approved = {a.lower() for a in self.settings.approved_aaguids}
            if aaguid not in approved:
                raise WebAuthnVerificationError(
                    ErrorCode.SIGNATURE_INVALID, "authenticator not approved", {"aaguid": aaguid}
                )
        return aaguid, verified.sign_count

    # ------------------------------------------------------------------
    # AUTHENTICATION
    # ------------------------------------------------------------------

    def begin_authentication(self, global_id: Any, client: ClientContext | None = None) -> CeremonyResult:
        attempt = CeremonyAttempt(purpose=ChallengePurpose.AUTHENTICATION)
        try:
            if not isinstance(global_id, str) or not global_id.startswith(GLOBAL_ID_PREFIX):
                raise ValidationException("global_id is required", field="global_id")
            self._check_access(global_id, client)
            record = self.credentials.get(global_id)
            if record is None:
                raise NotFoundError("Credential", short_id(global_id))
            challenge = self.challenges.issue(ChallengePurpose.AUTHENTICATION, global_id=global_id)
        except TesseraException as e:
            return self._failed(attempt, e, None, None, actor=global_id if isinstance(global_id, str) else None)

        attempt.advance(CeremonyState.CHALLENGE_ISSUED)
        attempt.advance(CeremonyState.AWAITING_ATTESTATION)
        options = {
            "challenge": challenge.challenge_b64,
            "rpId": self.settings.rp_id,
            "allowCredentials": [record.descriptor()],
            "userVerification": self.settings.effective_user_verification.value,
            "timeout": self.challenges.timeout_seconds * 1000,
        }
        return CeremonyResult(
            success=True,
            state=attempt.state,
            data={"session_token": challenge.session_token, "options": options},
            global_id=global_id,
            attempt=attempt,
        )

    def complete_authentication(
        self,
        session_token: Any,
        credential: Any,
        client: ClientContext | None = None,
    ) -> CeremonyResult:
        client = client or ClientContext()
        attempt = CeremonyAttempt.resume(ChallengePurpose.AUTHENTICATION)
        global_id: str | None = None
        try:
            token = _require_token(session_token)
            assertion = parse_assertion(credential)

            attempt.advance(CeremonyState.VERIFYING)
            challenge = self._consume(token, ChallengePurpose.AUTHENTICATION)
            global_id = challenge.global_id
            # consumed before the gate runs, so a denial burns the challenge
            self._check_access(global_id or "", client)
            record = self.credentials.get(global_id or "")
            if record is None:
                raise NotFoundError("Credential", short_id(global_id))

            if b64url_encode(assertion.credential_id) != record.credential_id:
                raise WebAuthnVerificationError(ErrorCode.SIGNATURE_INVALID, "credential id mismatch")
            verify_challenge_binding(assertion.client_data, challenge.challenge, self.crypto)
            verified = verify_assertion(
                assertion,
                challenge=challenge.challenge,
                rp_id=self.settings.rp_id,
                origin=self.settings.origin,
                public_key=record.public_key,
                user_verification=self.settings.effective_user_verification,
            )
            updated = self.credentials.update_counter(record.global_id, verified.new_sign_count)
        except TesseraException as e:
            return self._failed(attempt, e, client, AuditAction.AUTHENTICATION_FAILURE, actor=global_id)

        attempt.advance(CeremonyState.VERIFIED)
        self._refresh_device(updated, client)
        logger.info(f"Authenticated {short_id(updated.global_id)}")
        self.audit.record(
            AuditAction.AUTHENTICATION_SUCCESS,
            actor=updated.global_id,
            resource=updated.global_id,
            success=True,
            metadata={"sign_count": updated.sign_count},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return CeremonyResult(
            success=True,
            state=attempt.state,
            data={"global_id": updated.global_id, "sign_count": updated.sign_count},
            global_id=updated.global_id,
            attempt=attempt,
        )

    def _refresh_device(self, record: CredentialRecord, client: ClientContext) -> None:
        if not client.user_agent:
            return
        new_type, new_name = detect_device_type(client.user_agent), device_name(client.user_agent)
        if (new_type, new_name) == (record.device_type, record.device_name):
            return
        try:
            self.credentials.update_device_metadata(record.global_id, new_type, new_name)
        except TesseraException as e:
            logger.warning(f"Device metadata refresh skipped for {short_id(record.global_id)}: {e.message}")

    # ------------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------------

    def _check_access(self, global_id: str, client: ClientContext | None) -> None:
        """Run the global kill-switch check.

        Raises:
            AccessRevokedError: REVOKED, or BACKING_STORE_UNAVAILABLE under fail-closed.
        """
        if self.gate is None:
            return
        decision = self.gate.check(
            global_id=global_id,
            ip_address=client.ip_address if client else None,
            resource="authentication",
        )
        if not decision.allowed:
            raise AccessRevokedError(decision.code or ErrorCode.REVOKED, decision.reason or "revoked")

    def _consume(self, session_token: str, purpose: ChallengePurpose) -> ChallengeRecord:
        challenge = self.challenges.consume(session_token)
        if challenge is None:
            raise WebAuthnVerificationError(ErrorCode.CHALLENGE_EXPIRED_OR_MISSING, "challenge expired or missing")
        if challenge.purpose is not purpose:
            raise WebAuthnVerificationError(
                ErrorCode.CHALLENGE_EXPIRED_OR_MISSING,
                f"challenge issued for {challenge.purpose.value}",
            )
        return challenge

    def _failed(
        self,
        attempt: CeremonyAttempt,
        error: TesseraException,
        client: ClientContext | None,
        audit_action: AuditAction | None,
        actor: str | None = None,
    ) -> CeremonyResult:
        code = error.code or ErrorCode.MALFORMED_REQUEST
        reason = error.message
        attempt.fail(code, reason)
        retryable = code is ErrorCode.BACKING_STORE_UNAVAILABLE

        log = logger.error if retryable else logger.info
        log(f"{attempt.purpose.value} ceremony failed: {code.value} ({reason})")

        if audit_action is not None:
            self.audit.record(
                audit_action,
                actor=actor or "anonymous",
                resource=actor or attempt.purpose.value,
                success=False,
                metadata={"code": code.value, "reason": reason, **error.details},
                ip_address=client.ip_address if client else None,
                user_agent=client.user_agent if client else None,
            )
        return CeremonyResult(
            success=False,
            state=attempt.state,
            code=code,
            reason=reason,
            retryable=retryable,
            global_id=actor,
            attempt=attempt,
        )
