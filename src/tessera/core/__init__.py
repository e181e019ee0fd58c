# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Tessera Core - configuration, errors, logging and orchestration."""

from .config import CoreSettings, DisclosurePolicy, RevocationFailurePolicy, UserVerification, get_config
from .exceptions import (
    AccessRevokedError,
    ConfigException,
    ConflictError,
    ErrorCode,
    NotFoundError,
    StoreUnavailableError,
    TesseraException,
    ValidationException,
    WebAuthnVerificationError,
)
from .logging import configure_logging, correlation_context
from .response import TesseraResponse, err, ok

__all__ = [
    "CoreSettings",
    "DisclosurePolicy",
    "RevocationFailurePolicy",
    "UserVerification",
    "get_config",
    "AccessRevokedError",
    "ConfigException",
    "ConflictError",
    "ErrorCode",
    "NotFoundError",
    "StoreUnavailableError",
    "TesseraException",
    "ValidationException",
    "WebAuthnVerificationError",
    "configure_logging",
    "correlation_context",
    "TesseraResponse",
    "err",
    "ok",
]
