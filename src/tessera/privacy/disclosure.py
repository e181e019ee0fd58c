# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Selective disclosure: release only what was both requested and consented.

    allowed = requested ∩ consented

When the user gave no consent list, the deployment's DisclosurePolicy
decides: PERMISSIVE releases every requested field, STRICT releases none.
Fields with empty values (None, "", [], {}) are never released; 0 and
False are real values and are. Unknown field names are ignored.

Pure functions, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.config import DisclosurePolicy


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)) and len(value) == 0:
        return True
    return False


@dataclass(frozen=True)
class DisclosureDecision:
    """Outcome of a disclosure computation, suitable for auditing."""

    claims: dict[str, Any]
    requested: list[str]
    consented: list[str] | None
    allowed: list[str]
    policy: DisclosurePolicy
    withheld: list[str] = field(default_factory=list)

    @property
    def disclosed_fields(self) -> list[str]:
        return list(self.claims)

    def audit_metadata(self) -> dict[str, Any]:
        """Field names only; never values."""
        return {
            "requested_fields": self.requested,
            "consented_fields": self.consented,
            "disclosed_fields": self.disclosed_fields,
            "withheld_fields": self.withheld,
            "policy": self.policy.value,
        }


def allowed_fields(
    requested: Iterable[str],
    consented: Iterable[str] | None,
    policy: DisclosurePolicy = DisclosurePolicy.PERMISSIVE,
) -> list[str]:
    """Requested fields the user agreed to share, in request order."""
    requested_list = list(dict.fromkeys(requested))
    consented_set = set(consented) if consented else set()
    if not consented_set:
        return requested_list if policy is DisclosurePolicy.PERMISSIVE else []
    return [f for f in requested_list if f in consented_set]


def decide(
    profile: Mapping[str, Any],
    requested: Iterable[str],
    consented: Iterable[str] | None,
    policy: DisclosurePolicy = DisclosurePolicy.PERMISSIVE,
) -> DisclosureDecision:
    requested_list = list(dict.fromkeys(requested))
    consented_list = list(consented) if consented is not None else None
    allowed = allowed_fields(requested_list, consented_list, policy)

    claims = {name: profile[name] for name in allowed if name in profile and not is_empty(profile[name])}
    return DisclosureDecision(
        claims=claims,
        requested=requested_list,
        consented=consented_list,
        allowed=allowed,
        policy=policy,
        withheld=[f for f in requested_list if f not in claims],
    )


def disclose(
    profile: Mapping[str, Any],
    requested: Iterable[str],
    consented: Iterable[str] | None,
    policy: DisclosurePolicy = DisclosurePolicy.PERMISSIVE,
) -> dict[str, Any]:
    """Return the subset of ``profile`` that may be shown to a relying party.

    Example:
        >>> disclose({"a": 1, "b": 2, "c": 3}, ["a", "c"], ["a"])
        {'a': 1}
    """
    return decide(profile, requested, consented, policy).claims
