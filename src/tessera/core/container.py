# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Wiring for the identity components.

Every store is constructed here and handed to its consumers explicitly;
no component looks anything up globally. The HTTP server keeps one
container on ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..identity.ceremony import CeremonyService
from ..identity.challenges import ChallengeCache
from ..identity.credentials import CredentialStore
from ..identity.crypto import CryptoProvider, DefaultCryptoProvider
from ..identity.pairwise import PairwiseDeriver
from ..privacy.audit import AuditBackend, AuditTrail, create_audit_backend
from ..privacy.gate import AccessGate
from ..privacy.revocation import RevocationRegistry
from ..storage.backends import KeyValueBackend, create_backend
from .authorization_service import AuthorizationService
from .config import CoreSettings, get_config
from .repositories import (
    InMemoryProfileRepository,
    InMemoryRelyingPartyRegistry,
    ProfileRepository,
    RelyingPartyRegistry,
)

logger = logging.getLogger(__name__)


@dataclass
class IdentityContainer:
    settings: CoreSettings
    backend: KeyValueBackend
    audit: AuditTrail
    credentials: CredentialStore
    challenges: ChallengeCache
    ceremony: CeremonyService
    pairwise: PairwiseDeriver
    revocation: RevocationRegistry
    gate: AccessGate
    profiles: ProfileRepository
    relying_parties: RelyingPartyRegistry
    authorization: AuthorizationService


def build_container(
    settings: CoreSettings | None = None,
    backend: KeyValueBackend | None = None,
    audit_backend: AuditBackend | None = None,
    profiles: ProfileRepository | None = None,
    relying_parties: RelyingPartyRegistry | None = None,
    crypto: CryptoProvider | None = None,
) -> IdentityContainer:
    """Assemble the identity core. Any collaborator may be supplied for tests."""
    settings = settings or get_config()
    backend = backend or create_backend(settings)
    crypto = crypto or DefaultCryptoProvider()
    profiles = profiles if profiles is not None else InMemoryProfileRepository()
    relying_parties = relying_parties if relying_parties is not None else InMemoryRelyingPartyRegistry()

    audit = AuditTrail(
        audit_backend if audit_backend is not None else create_audit_backend(settings),
        enabled=settings.audit_enabled,
    )
    credentials = CredentialStore(backend)
    challenges = ChallengeCache(backend, timeout_seconds=settings.challenge_timeout_seconds)
    revocation = RevocationRegistry(backend, audit, settings.revocation_ttl_seconds)
    gate = AccessGate(revocation, audit, settings.effective_failure_policy)
    ceremony = CeremonyService(settings, credentials, challenges, audit, crypto, gate=gate)
    pairwise = PairwiseDeriver(settings.pairwise_secret or "", settings.pairwise_cache_size, crypto)
    authorization = AuthorizationService(settings, ceremony, pairwise, gate, profiles, relying_parties, audit)

    logger.info(
        f"Identity core ready (store={backend.name}, rp_id={settings.rp_id}, "
        f"failure_policy={gate.failure_policy.value}, disclosure={settings.disclosure_policy.value})"
    )
    return IdentityContainer(
        settings=settings,
        backend=backend,
        audit=audit,
        credentials=credentials,
        challenges=challenges,
        ceremony=ceremony,
        pairwise=pairwise,
        revocation=revocation,
        gate=gate,
        profiles=profiles,
        relying_parties=relying_parties,
        authorization=authorization,
    )
