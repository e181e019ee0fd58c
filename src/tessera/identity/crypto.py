# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Hashing primitives behind one pluggable interface.

Identifier derivation (global ids, device fingerprints, pairwise ids) goes
through a :class:`CryptoProvider`. Authenticator signatures are verified by
py_webauthn in :mod:`tessera.identity.webauthn`.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Protocol, runtime_checkable


@runtime_checkable
class CryptoProvider(Protocol):
    """Interface for the hashing capability used by the core."""

    def sha256(self, data: bytes) -> bytes: ...

    def hmac_sha256(self, key: bytes, data: bytes) -> bytes: ...

    def constant_time_equals(self, a: bytes, b: bytes) -> bool: ...


class DefaultCryptoProvider:
    """Reference CryptoProvider on the standard library."""

    def sha256(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()

    def hmac_sha256(self, key: bytes, data: bytes) -> bytes:
        return hmac.new(key, data, hashlib.sha256).digest()

    def constant_time_equals(self, a: bytes, b: bytes) -> bool:
        return hmac.compare_digest(a, b)
