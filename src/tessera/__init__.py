# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Tessera - self-sovereign identity with pairwise identifiers and a kill switch.

A hardware-bound WebAuthn credential anchors one global identity. From it
Tessera derives a distinct, unlinkable pairwise identifier for every
relying party, discloses only consented profile attributes, and can revoke
access per relying party or globally in real time.

Packages:
  core      configuration, errors, logging, orchestration
  identity  credentials, challenges, ceremonies, pairwise derivation
  privacy   disclosure, revocation, access gate, audit trail
  storage   key-value backends (memory, Redis)
  server    Starlette HTTP API

Server entry point: ``tessera-server``
"""

__version__ = "0.3.0"
