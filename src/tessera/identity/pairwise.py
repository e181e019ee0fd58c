# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Pairwise identifier derivation.

Each relying party sees a different identifier for the same person:

    pairwise_id = "did:tessera:pairwise:" + hex(HMAC-SHA256(secret, global_id | relying_party_id))

Without the server secret, two pairwise identifiers cannot be linked to
each other or to the global identifier.
"""

from __future__ import annotations

import threading
from collections import OrderedDict

from ..core.exceptions import ValidationException
from .crypto import CryptoProvider, DefaultCryptoProvider

PAIRWISE_PREFIX = "did:tessera:pairwise:"


def _encode_input(global_id: str, relying_party_id: str) -> bytes:
    # Length-prefixed so ("a|b", "c") and ("a", "b|c") never collide
    gid = global_id.encode("utf-8")
    rp = relying_party_id.encode("utf-8")
    return len(gid).to_bytes(4, "big") + gid + b"|" + len(rp).to_bytes(4, "big") + rp


class PairwiseDeriver:
    """Deterministic, secret-keyed pairwise identifier derivation.

    Args:
        secret: HMAC key. Changing it changes every pairwise identifier.
        cache_size: Max cached derivations (LRU); 0 disables the cache.
        crypto: Crypto provider for the HMAC.
    """

    def __init__(self, secret: str | bytes, cache_size: int = 1000, crypto: CryptoProvider | None = None):
        if not secret:
            raise ValidationException("Pairwise secret must not be empty", field="pairwise_secret")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self._crypto = crypto or DefaultCryptoProvider()
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, str], str] = OrderedDict()
        self._lock = threading.Lock()

    def derive(self, global_id: str, relying_party_id: str) -> str:
        if not global_id or not relying_party_id:
            raise ValidationException("global_id and relying_party_id are required")

        key = (global_id, relying_party_id)
        if self._cache_size:
            with self._lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._cache.move_to_end(key)
                    return cached

        digest = self._crypto.hmac_sha256(self._secret, _encode_input(global_id, relying_party_id))
        pairwise_id = PAIRWISE_PREFIX + digest.hex()

        if self._cache_size:
            with self._lock:
                self._cache[key] = pairwise_id
                self._cache.move_to_end(key)
                while len(self._cache) > self._cache_size:
                    self._cache.popitem(last=False)
        return pairwise_id

    def cache_info(self) -> dict[str, int]:
        with self._lock:
            return {"size": len(self._cache), "max_size": self._cache_size}
