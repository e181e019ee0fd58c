# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""WebAuthn registration and assertion verification on py_webauthn.

Browsers post the JSON form of a ``PublicKeyCredential``:

- registration: ``response.clientDataJSON`` and ``response.attestationObject``
  (CBOR ``{fmt, attStmt, authData}``; ``none`` and ``packed`` self
  attestation are accepted);
- assertion: ``response.clientDataJSON``, ``response.authenticatorData`` and
  ``response.signature``.

Payloads are parsed up front (``parse_registration`` / ``parse_assertion``)
so malformed input is rejected before a challenge is consumed. Verification
delegates to ``verify_registration_response`` and
``verify_authentication_response`` and maps library failures onto ErrorCode.

Parsing functions raise ValidationException (malformed input); verification
functions raise WebAuthnVerificationError with the matching ErrorCode.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.authentication.verify_authentication_response import VerifiedAuthentication
from webauthn.helpers import (
    decode_credential_public_key,
    parse_attestation_object,
    parse_authentication_credential_json,
    parse_authenticator_data,
    parse_client_data_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidAuthenticatorDataStructure,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
    UnsupportedPublicKeyType,
)
from webauthn.helpers.structs import AuthenticationCredential, CollectedClientData, RegistrationCredential
from webauthn.registration.verify_registration_response import VerifiedRegistration

from ..core.config import UserVerification
from ..core.exceptions import ErrorCode, ValidationException, WebAuthnVerificationError
from .crypto import CryptoProvider

TYPE_CREATE = "webauthn.create"
TYPE_GET = "webauthn.get"

_MAX_FIELD_LENGTH = 16384

_PARSE_ERRORS = (
    InvalidJSONStructure,
    InvalidRegistrationResponse,
    InvalidAuthenticationResponse,
    InvalidCBORData,
    InvalidAuthenticatorDataStructure,
    UnsupportedPublicKeyType,
    binascii.Error,
    KeyError,
    TypeError,
    ValueError,
)

_VERIFY_ERRORS = (
    InvalidRegistrationResponse,
    InvalidAuthenticationResponse,
    InvalidCBORData,
    InvalidAuthenticatorDataStructure,
    UnsupportedPublicKeyType,
)


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: Any, field: str) -> bytes:
    """Decode a base64url field, tolerating missing padding.

    Raises:
        ValidationException: If the value is not a non-empty base64url string.
    """
    if not isinstance(value, str) or not value:
        raise ValidationException(f"{field} is required", field=field)
    if len(value) > _MAX_FIELD_LENGTH:
        raise ValidationException(f"{field} is too long", field=field)
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as e:
        raise ValidationException(f"{field} is not valid base64url", field=field) from e


def _check_envelope(payload: Any, required: tuple[str, ...]) -> None:
    """Shape checks the library does not report field by field."""
    if not isinstance(payload, dict):
        raise ValidationException("credential must be an object", field="credential")
    if payload.get("type", "public-key") != "public-key":
        raise ValidationException("credential type must be public-key", field="type")
    if not isinstance(payload.get("rawId") or payload.get("id"), str):
        raise ValidationException("credential id is required", field="rawId")
    response = payload.get("response")
    if not isinstance(response, dict):
        raise ValidationException("response is required", field="response")
    for name in required:
        value = response.get(name)
        if not isinstance(value, str) or not value:
            raise ValidationException(f"{name} is required", field=name)
        if len(value) > _MAX_FIELD_LENGTH:
            raise ValidationException(f"{name} is too long", field=name)


def _normalized(payload: dict[str, Any]) -> dict[str, Any]:
    """Fill ``id``/``rawId`` from each other; browsers always send both."""
    normalized = dict(payload)
    credential_id = payload.get("rawId") or payload.get("id")
    normalized.setdefault("id", credential_id)
    normalized.setdefault("rawId", credential_id)
    normalized.setdefault("type", "public-key")
    return normalized


@dataclass(frozen=True)
class ParsedRegistration:
    """A decoded registration response, not yet verified."""

    credential: RegistrationCredential
    client_data: CollectedClientData
    credential_id: bytes
    public_key: bytes
    algorithm: int
    attestation_format: str


@dataclass(frozen=True)
class ParsedAssertion:
    """A decoded assertion response, not yet verified."""

    credential: AuthenticationCredential
    client_data: CollectedClientData
    credential_id: bytes
    sign_count: int


def parse_registration(payload: Any) -> ParsedRegistration:
    """Decode the JSON a browser posts after ``navigator.credentials.create()``.

    Raises:
        ValidationException: If the payload or its CBOR attestation object is malformed.
    """
    _check_envelope(payload, ("clientDataJSON", "attestationObject"))
    try:
        credential = parse_registration_credential_json(_normalized(payload))
        client_data = parse_client_data_json(credential.response.client_data_json)
        attestation = parse_attestation_object(credential.response.attestation_object)
        attested = attestation.auth_data.attested_credential_data
        if attested is None:
            raise ValidationException("attested credential data missing", field="attestationObject")
        algorithm = int(decode_credential_public_key(attested.credential_public_key).alg)
    except _PARSE_ERRORS as e:
        raise ValidationException("registration response is malformed", field="attestationObject") from e

    return ParsedRegistration(
        credential=credential,
        client_data=client_data,
        credential_id=attested.credential_id,
        public_key=attested.credential_public_key,
        algorithm=algorithm,
        attestation_format=str(getattr(attestation.fmt, "value", attestation.fmt)),
    )


def parse_assertion(payload: Any) -> ParsedAssertion:
    """Decode the JSON a browser posts after ``navigator.credentials.get()``.

    Raises:
        ValidationException: If the payload is malformed.
    """
    _check_envelope(payload, ("clientDataJSON", "authenticatorData", "signature"))
    try:
        credential = parse_authentication_credential_json(_normalized(payload))
        client_data = parse_client_data_json(credential.response.client_data_json)
        auth_data = parse_authenticator_data(credential.response.authenticator_data)
    except _PARSE_ERRORS as e:
        raise ValidationException("authentication response is malformed", field="authenticatorData") from e

    return ParsedAssertion(
        credential=credential,
        client_data=client_data,
        credential_id=credential.raw_id,
        sign_count=auth_data.sign_count,
    )


# =============================================================================
# CHECKS
# =============================================================================


def verify_challenge_binding(client_data: CollectedClientData, expected_challenge: bytes, crypto: CryptoProvider) -> None:
    """Check the challenge and reject cross-origin (iframe) ceremonies."""
    if not crypto.constant_time_equals(client_data.challenge, expected_challenge):
        raise WebAuthnVerificationError(ErrorCode.CHALLENGE_EXPIRED_OR_MISSING, "challenge mismatch")
    if client_data.cross_origin:
        raise WebAuthnVerificationError(ErrorCode.SIGNATURE_INVALID, "cross-origin ceremony rejected")


def cose_algorithms(algorithms: list[int]) -> list[COSEAlgorithmIdentifier]:
    return [COSEAlgorithmIdentifier(alg) for alg in algorithms]


def verify_registration(
    parsed: ParsedRegistration,
    *,
    challenge: bytes,
    rp_id: str,
    origin: str,
    user_verification: UserVerification,
    algorithms: list[int],
) -> VerifiedRegistration:
    """Verify client data, authenticator data and the attestation statement."""
    try:
        return verify_registration_response(
            credential=parsed.credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=origin,
            require_user_verification=user_verification is UserVerification.REQUIRED,
            supported_pub_key_algs=cose_algorithms(algorithms),
        )
    except _VERIFY_ERRORS as e:
        raise WebAuthnVerificationError(ErrorCode.SIGNATURE_INVALID, str(e) or "registration rejected") from e


def verify_assertion(
    parsed: ParsedAssertion,
    *,
    challenge: bytes,
    rp_id: str,
    origin: str,
    public_key: bytes,
    user_verification: UserVerification,
) -> VerifiedAuthentication:
    """Verify client data, authenticator data and the assertion signature.

    The stored counter is not passed in: counter regression is checked by
    ``CredentialStore.update_counter`` as one compare-and-set.
    """
    try:
        return verify_authentication_response(
            credential=parsed.credential,
            expected_challenge=challenge,
            expected_rp_id=rp_id,
            expected_origin=origin,
            credential_public_key=public_key,
            credential_current_sign_count=0,
            require_user_verification=user_verification is UserVerification.REQUIRED,
        )
    except _VERIFY_ERRORS as e:
        raise WebAuthnVerificationError(ErrorCode.SIGNATURE_INVALID, str(e) or "assertion rejected") from e
