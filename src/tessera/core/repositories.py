# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Narrow interfaces to the collaborators that own profile data and relying parties.

The identity core never stores profile attributes itself. It asks a
ProfileRepository for the attributes of a global identity and a
RelyingPartyRegistry for what each relying party asks for. In-memory
implementations are provided for development and tests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class RelyingParty:
    id: str
    display_name: str
    requested_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "requested_fields": list(self.requested_fields)}


DEFAULT_RELYING_PARTIES: tuple[RelyingParty, ...] = (
    RelyingParty("health", "Health Portal", ["blood_group", "full_name", "date_of_birth"]),
    RelyingParty("agriculture", "Agriculture Portal", ["farmer_status", "full_name", "address"]),
    RelyingParty("smartcity", "Smart City Portal", ["residency_status", "full_name", "address"]),
)


class ProfileRepository(Protocol):
    def get_profile(self, global_id: str) -> dict[str, Any] | None: ...

    def save_profile(self, global_id: str, profile: dict[str, Any]) -> None: ...

    def delete_profile(self, global_id: str) -> bool: ...


class RelyingPartyRegistry(Protocol):
    def get(self, relying_party_id: str) -> RelyingParty | None: ...

    def all(self) -> list[RelyingParty]: ...


class InMemoryProfileRepository:
    def __init__(self, profiles: dict[str, dict[str, Any]] | None = None):
        self._profiles: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (profiles or {}).items()}
        self._lock = threading.Lock()

    def get_profile(self, global_id: str) -> dict[str, Any] | None:
        with self._lock:
            profile = self._profiles.get(global_id)
            return dict(profile) if profile is not None else None

    def save_profile(self, global_id: str, profile: dict[str, Any]) -> None:
        with self._lock:
            self._profiles[global_id] = dict(profile)

    def delete_profile(self, global_id: str) -> bool:
        with self._lock:
            return self._profiles.pop(global_id, None) is not None


class InMemoryRelyingPartyRegistry:
    """Registry seeded with the built-in portals unless ``parties`` is given."""

    def __init__(self, parties: list[RelyingParty] | tuple[RelyingParty, ...] | None = None):
        source = DEFAULT_RELYING_PARTIES if parties is None else parties
        self._parties = {p.id: p for p in source}

    def get(self, relying_party_id: str) -> RelyingParty | None:
        return self._parties.get(relying_party_id)

    def all(self) -> list[RelyingParty]:
        return list(self._parties.values())

    def register(self, party: RelyingParty) -> None:
        self._parties[party.id] = party
