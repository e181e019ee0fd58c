"""Tests for tessera.identity.crypto."""

from __future__ import annotations

import hashlib
import hmac

import pytest

from tessera.identity.crypto import CryptoProvider, DefaultCryptoProvider


@pytest.fixture
def crypto() -> DefaultCryptoProvider:
    return DefaultCryptoProvider()


class TestHashing:
    def test_satisfies_protocol(self, crypto):
        assert isinstance(crypto, CryptoProvider)

    def test_sha256(self, crypto):
        assert crypto.sha256(b"abc") == hashlib.sha256(b"abc").digest()

    def test_hmac_matches_reference(self, crypto):
        assert crypto.hmac_sha256(b"key", b"data") == hmac.new(b"key", b"data", hashlib.sha256).digest()

    def test_hmac_depends_on_key(self, crypto):
        assert crypto.hmac_sha256(b"k1", b"data") != crypto.hmac_sha256(b"k2", b"data")

    def test_constant_time_equals(self, crypto):
        assert crypto.constant_time_equals(b"a", b"a")
        assert not crypto.constant_time_equals(b"a", b"b")
