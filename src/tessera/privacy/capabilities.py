# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Closed set of operator capabilities and the roles that grant them."""

from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    REVOKE = "revoke"
    RESTORE = "restore"
    READ_STATUS = "read_status"
    READ_AUDIT = "read_audit"


class Role(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    AUDITOR = "auditor"
    RELYING_PARTY = "relying_party"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.OPERATOR: frozenset({Capability.REVOKE, Capability.RESTORE, Capability.READ_STATUS}),
    Role.AUDITOR: frozenset({Capability.READ_STATUS, Capability.READ_AUDIT}),
    Role.RELYING_PARTY: frozenset({Capability.READ_STATUS}),
}


def capabilities_for(role: Role | str) -> frozenset[Capability]:
    """Capabilities granted by ``role``.

    Raises:
        ValueError: If ``role`` is not a known role name.
    """
    return ROLE_CAPABILITIES[Role(role)]


def parse_capabilities(values: list[str]) -> frozenset[Capability]:
    """Parse capability names, raising ValueError on an unknown one."""
    return frozenset(Capability(v) for v in values)
