# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Service authorization: log a user in to a relying party.

One call runs the whole protected-request pipeline:

1. Resolve the relying party and the identity bound to the challenge.
2. Derive the pairwise identifier for that relying party.
3. Revocation gate (pairwise, then global). A denial stops here.
4. Fresh assertion verification and counter bump.
5. Selective disclosure of the requested profile attributes.
6. Audit the disclosure decision.

The relying party receives the pairwise identifier and the disclosed
claims. The global identifier never leaves this service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..identity.ceremony import CeremonyService, ClientContext
from ..identity.pairwise import PairwiseDeriver
from ..privacy.audit import AuditAction, AuditTrail
from ..privacy.disclosure import decide
from ..privacy.gate import AccessGate
from .config import CoreSettings
from .exceptions import ErrorCode, TesseraException, ValidationException
from .logging import short_id
from .repositories import ProfileRepository, RelyingPartyRegistry
from .response import TesseraResponse, err, ok

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationResult:
    success: bool
    code: ErrorCode | None = None
    reason: str | None = None
    retryable: bool = False
    pairwise_id: str | None = None
    relying_party_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)
    disclosed_fields: list[str] = field(default_factory=list)

    def to_response(self) -> TesseraResponse:
        if not self.success:
            return err(self.code or ErrorCode.MALFORMED_REQUEST, self.reason, retryable=self.retryable)
        return ok(
            {
                "pairwise_id": self.pairwise_id,
                "relying_party_id": self.relying_party_id,
                "claims": self.claims,
                "disclosed_fields": self.disclosed_fields,
            }
        )


def _fail(code: ErrorCode, reason: str, retryable: bool = False) -> AuthorizationResult:
    return AuthorizationResult(success=False, code=code, reason=reason, retryable=retryable)


def _parse_consent(consented_fields: Any) -> list[str] | None:
    if consented_fields is None:
        return None
    if not isinstance(consented_fields, list) or not all(isinstance(f, str) for f in consented_fields):
        raise ValidationException("consented_fields must be a list of strings", field="consented_fields")
    return consented_fields


class AuthorizationService:
    """Orchestrates gate, assertion, derivation and disclosure for relying parties."""

    def __init__(
        self,
        settings: CoreSettings,
        ceremony: CeremonyService,
        pairwise: PairwiseDeriver,
        gate: AccessGate,
        profiles: ProfileRepository,
        relying_parties: RelyingPartyRegistry,
        audit: AuditTrail,
    ):
        self.settings = settings
        self.ceremony = ceremony
        self.pairwise = pairwise
        self.gate = gate
        self.profiles = profiles
        self.relying_parties = relying_parties
        self.audit = audit

    def authorize(
        self,
        session_token: Any,
        assertion: Any,
        relying_party_id: Any,
        consented_fields: Any = None,
        client: ClientContext | None = None,
    ) -> AuthorizationResult:
        client = client or ClientContext()
        try:
            if not isinstance(relying_party_id, str) or not relying_party_id:
                raise ValidationException("relying_party_id is required", field="relying_party_id")
            party = self.relying_parties.get(relying_party_id)
            if party is None:
                raise ValidationException("Unknown relying party", field="relying_party_id", value=relying_party_id)
            consent = _parse_consent(consented_fields)

            challenge = self.ceremony.challenges.peek(session_token) if isinstance(session_token, str) else None
            if challenge is not None and challenge.global_id:
                pairwise_id = self.pairwise.derive(challenge.global_id, party.id)
                decision = self.gate.check(pairwise_id, challenge.global_id, client.ip_address, resource=party.id)
                if not decision.allowed:
                    # Burn the challenge so it cannot be replayed after a restore
                    self.ceremony.challenges.consume(session_token)
                    return _fail(decision.code or ErrorCode.REVOKED, decision.reason or "revoked", decision.retryable)
        except TesseraException as e:
            code = e.code or ErrorCode.MALFORMED_REQUEST
            return _fail(code, e.message, retryable=code is ErrorCode.BACKING_STORE_UNAVAILABLE)

        result = self.ceremony.complete_authentication(session_token, assertion, client)
        if not result.success or result.global_id is None:
            return _fail(result.code or ErrorCode.SIGNATURE_INVALID, result.reason or "authentication failed", result.retryable)

        global_id = result.global_id
        pairwise_id = self.pairwise.derive(global_id, party.id)
        profile = self.profiles.get_profile(global_id) or {}
        disclosure = decide(profile, party.requested_fields, consent, self.settings.disclosure_policy)

        logger.info(
            f"Authorized {short_id(pairwise_id)} for {party.id}, disclosed {len(disclosure.claims)} of "
            f"{len(disclosure.requested)} fields"
        )
        self.audit.record(
            AuditAction.DISCLOSURE,
            actor=global_id,
            resource=party.id,
            success=True,
            metadata={**disclosure.audit_metadata(), "pairwise_id": pairwise_id},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return AuthorizationResult(
            success=True,
            pairwise_id=pairwise_id,
            relying_party_id=party.id,
            claims=disclosure.claims,
            disclosed_fields=disclosure.disclosed_fields,
        )

    def delete_account(
        self,
        session_token: Any,
        assertion: Any,
        client: ClientContext | None = None,
    ) -> TesseraResponse:
        """Delete the credential and profile after a fresh assertion. Irreversible.

        The assertion runs through the ceremony's access gate, so a globally
        revoked identity cannot delete itself until restored.
        """
        client = client or ClientContext()
        result = self.ceremony.complete_authentication(session_token, assertion, client)
        if not result.success or result.global_id is None:
            return result.to_response()

        global_id = result.global_id
        try:
            self.ceremony.credentials.delete(global_id)
        except TesseraException as e:
            code = e.code or ErrorCode.BACKING_STORE_UNAVAILABLE
            return err(code, e.message, retryable=code is ErrorCode.BACKING_STORE_UNAVAILABLE)
        self.profiles.delete_profile(global_id)

        logger.warning(f"Account deleted for {short_id(global_id)}")
        self.audit.record(
            AuditAction.ACCOUNT_DELETED,
            actor=global_id,
            resource=global_id,
            success=True,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return ok({"deleted": True})

    def consent_history(self, global_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return self.audit.consent_history(global_id, limit=limit)
