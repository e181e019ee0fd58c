"""Tests for tessera.identity.webauthn - payload parsing and verification."""

from __future__ import annotations

import pytest

from tessera.core.config import COSE_EDDSA, COSE_ES256, UserVerification
from tessera.core.exceptions import ErrorCode, ValidationException, WebAuthnVerificationError
from tessera.identity.crypto import DefaultCryptoProvider
from tessera.identity.webauthn import (
    TYPE_GET,
    b64url_decode,
    b64url_encode,
    parse_assertion,
    parse_registration,
    verify_assertion,
    verify_challenge_binding,
    verify_registration,
)

from tests.helpers.authenticator import DEFAULT_AAGUID, DEFAULT_ORIGIN, DEFAULT_RP_ID, FLAG_USER_PRESENT, SoftwareAuthenticator

CHALLENGE = b"\x01" * 32
CHALLENGE_B64 = b64url_encode(CHALLENGE)


@pytest.fixture
def crypto() -> DefaultCryptoProvider:
    return DefaultCryptoProvider()


def _verify_registration(payload, challenge=CHALLENGE, uv=UserVerification.PREFERRED, algorithms=(COSE_ES256, COSE_EDDSA)):
    return verify_registration(
        parse_registration(payload),
        challenge=challenge,
        rp_id=DEFAULT_RP_ID,
        origin=DEFAULT_ORIGIN,
        user_verification=uv,
        algorithms=list(algorithms),
    )


def _verify_assertion(auth, payload, uv=UserVerification.PREFERRED):
    return verify_assertion(
        parse_assertion(payload),
        challenge=CHALLENGE,
        rp_id=DEFAULT_RP_ID,
        origin=DEFAULT_ORIGIN,
        public_key=auth.cose_public_key,
        user_verification=uv,
    )


class TestBase64Url:
    def test_roundtrip_without_padding(self):
        encoded = b64url_encode(b"\xff\xfe\xfd\xfc")
        assert "=" not in encoded
        assert b64url_decode(encoded, "x") == b"\xff\xfe\xfd\xfc"

    @pytest.mark.parametrize("value", [None, "", 42, "A"])
    def test_rejects_bad_input(self, value):
        with pytest.raises(ValidationException) as exc_info:
            b64url_decode(value, "rawId")
        assert exc_info.value.field == "rawId"

    def test_rejects_oversized(self):
        with pytest.raises(ValidationException, match="too long"):
            b64url_decode("A" * 20000, "signature")


class TestParseRegistration:
    def test_none_attestation(self):
        auth = SoftwareAuthenticator()
        parsed = parse_registration(auth.register(CHALLENGE_B64))

        assert parsed.credential_id == auth.credential_id
        assert parsed.public_key == auth.cose_public_key
        assert parsed.algorithm == COSE_ES256
        assert parsed.attestation_format == "none"
        assert parsed.client_data.challenge == CHALLENGE

    def test_eddsa_key(self):
        parsed = parse_registration(SoftwareAuthenticator(algorithm=COSE_EDDSA).register(CHALLENGE_B64))
        assert parsed.algorithm == COSE_EDDSA

    def test_rawid_alone_is_enough(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64)
        del payload["id"]
        assert parse_registration(payload).credential_id

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            "string",
            {"type": "password", "id": "abc", "response": {}},
            {"type": "public-key", "response": {}},
            {"type": "public-key", "id": "abc"},
        ],
    )
    def test_rejects_malformed_envelope(self, payload):
        with pytest.raises(ValidationException):
            parse_registration(payload)

    def test_missing_attestation_object(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64)
        del payload["response"]["attestationObject"]
        with pytest.raises(ValidationException, match="attestationObject"):
            parse_registration(payload)

    def test_garbage_attestation_object(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64)
        payload["response"]["attestationObject"] = b64url_encode(b"\xff\x00not cbor")
        with pytest.raises(ValidationException, match="malformed"):
            parse_registration(payload)

    def test_oversized_field(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64)
        payload["response"]["clientDataJSON"] = "A" * 20000
        with pytest.raises(ValidationException, match="too long"):
            parse_registration(payload)


class TestParseAssertion:
    def test_parse(self):
        auth = SoftwareAuthenticator(sign_count=6)
        parsed = parse_assertion(auth.assertion(CHALLENGE_B64))

        assert parsed.credential_id == auth.credential_id
        assert parsed.sign_count == 7
        assert parsed.client_data.challenge == CHALLENGE

    def test_missing_signature(self):
        payload = SoftwareAuthenticator().assertion(CHALLENGE_B64)
        del payload["response"]["signature"]
        with pytest.raises(ValidationException, match="signature"):
            parse_assertion(payload)

    def test_truncated_authenticator_data(self):
        payload = SoftwareAuthenticator().assertion(CHALLENGE_B64)
        payload["response"]["authenticatorData"] = b64url_encode(b"\x00" * 20)
        with pytest.raises(ValidationException):
            parse_assertion(payload)


class TestChallengeBinding:
    def test_ok(self, crypto):
        parsed = parse_assertion(SoftwareAuthenticator().assertion(CHALLENGE_B64))
        verify_challenge_binding(parsed.client_data, CHALLENGE, crypto)

    def test_wrong_challenge(self, crypto):
        parsed = parse_assertion(SoftwareAuthenticator().assertion(CHALLENGE_B64))
        with pytest.raises(WebAuthnVerificationError) as exc_info:
            verify_challenge_binding(parsed.client_data, b"\x02" * 32, crypto)
        assert exc_info.value.code is ErrorCode.CHALLENGE_EXPIRED_OR_MISSING

    def test_cross_origin(self, crypto):
        parsed = parse_assertion(SoftwareAuthenticator().assertion(CHALLENGE_B64, crossOrigin=True))
        with pytest.raises(WebAuthnVerificationError, match="cross-origin"):
            verify_challenge_binding(parsed.client_data, CHALLENGE, crypto)


class TestVerifyRegistration:
    def test_none_attestation(self):
        auth = SoftwareAuthenticator()
        verified = _verify_registration(auth.register(CHALLENGE_B64))

        assert verified.credential_id == auth.credential_id
        assert verified.credential_public_key == auth.cose_public_key
        assert verified.aaguid == str(DEFAULT_AAGUID)
        assert verified.sign_count == 0

    def test_packed_self_attestation(self):
        auth = SoftwareAuthenticator()
        assert _verify_registration(auth.register(CHALLENGE_B64, fmt="packed")).credential_id == auth.credential_id

    def test_packed_signed_by_other_key(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64, fmt="packed", signer=SoftwareAuthenticator())
        with pytest.raises(WebAuthnVerificationError) as exc_info:
            _verify_registration(payload)
        assert exc_info.value.code is ErrorCode.SIGNATURE_INVALID

    def test_wrong_origin(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64, origin="https://evil.example")
        with pytest.raises(WebAuthnVerificationError):
            _verify_registration(payload)

    def test_get_type_rejected(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64, ceremony_type=TYPE_GET)
        with pytest.raises(WebAuthnVerificationError):
            _verify_registration(payload)

    def test_user_verification_required(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64, flags=FLAG_USER_PRESENT)
        _verify_registration(payload)
        with pytest.raises(WebAuthnVerificationError):
            _verify_registration(payload, uv=UserVerification.REQUIRED)

    def test_algorithm_not_offered(self):
        payload = SoftwareAuthenticator().register(CHALLENGE_B64)
        with pytest.raises(WebAuthnVerificationError):
            _verify_registration(payload, algorithms=(COSE_EDDSA,))


class TestVerifyAssertion:
    @pytest.mark.parametrize("algorithm", [COSE_ES256, COSE_EDDSA])
    def test_valid(self, algorithm):
        auth = SoftwareAuthenticator(algorithm=algorithm)
        verified = _verify_assertion(auth, auth.assertion(CHALLENGE_B64))
        assert verified.new_sign_count == 1

    def test_signature_from_other_key(self):
        auth = SoftwareAuthenticator()
        with pytest.raises(WebAuthnVerificationError) as exc_info:
            _verify_assertion(SoftwareAuthenticator(), auth.assertion(CHALLENGE_B64))
        assert exc_info.value.code is ErrorCode.SIGNATURE_INVALID

    def test_rp_id_mismatch(self):
        auth = SoftwareAuthenticator()
        with pytest.raises(WebAuthnVerificationError):
            _verify_assertion(auth, auth.assertion(CHALLENGE_B64, rp_id="evil.example"))

    def test_user_presence_required(self):
        auth = SoftwareAuthenticator()
        with pytest.raises(WebAuthnVerificationError):
            _verify_assertion(auth, auth.assertion(CHALLENGE_B64, flags=0))

    def test_stale_counter_left_to_store(self):
        """The counter is compared by the credential store, not here."""
        auth = SoftwareAuthenticator(counter_step=0)
        assert _verify_assertion(auth, auth.assertion(CHALLENGE_B64)).new_sign_count == 0
