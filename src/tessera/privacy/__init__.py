# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Privacy module for Tessera - disclosure, revocation, access gate and audit."""

from .audit import AuditAction, AuditEvent, AuditTrail, FileAuditBackend, InMemoryAuditBackend, verify_chain
from .capabilities import Capability, Role
from .disclosure import DisclosureDecision, decide, disclose
from .gate import AccessGate, GateDecision
from .revocation import RevocationEntry, RevocationRegistry, RevocationScope, RevocationStatus

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditTrail",
    "FileAuditBackend",
    "InMemoryAuditBackend",
    "verify_chain",
    "Capability",
    "Role",
    "DisclosureDecision",
    "decide",
    "disclose",
    "AccessGate",
    "GateDecision",
    "RevocationEntry",
    "RevocationRegistry",
    "RevocationScope",
    "RevocationStatus",
]
