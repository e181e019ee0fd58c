# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Identity lifecycle: credentials, challenges, ceremonies and pairwise derivation.

Key components:
- webauthn: registration and assertion parsing and verification on py_webauthn
- credentials: CredentialStore with duplicate-device detection and counter CAS
- challenges: single-use ChallengeCache
- ceremony: enrollment/authentication state machine (CeremonyService)
- pairwise: PairwiseDeriver
"""

from .ceremony import CeremonyResult, CeremonyService, CeremonyState, ClientContext
from .challenges import ChallengeCache, ChallengePurpose, ChallengeRecord
from .credentials import CredentialRecord, CredentialStore
from .crypto import CryptoProvider, DefaultCryptoProvider
from .pairwise import PairwiseDeriver

__all__ = [
    "CeremonyResult",
    "CeremonyService",
    "CeremonyState",
    "ClientContext",
    "ChallengeCache",
    "ChallengePurpose",
    "ChallengeRecord",
    "CredentialRecord",
    "CredentialStore",
    "CryptoProvider",
    "DefaultCryptoProvider",
    "PairwiseDeriver",
]
