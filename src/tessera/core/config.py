# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Core configuration - centralized config for the tessera package.

All environment-based configuration should flow through this module.
Settings are read once at startup and handed to the identity components;
nothing in the core re-reads the environment per call.

Usage:
    from tessera.core.config import get_config
    config = get_config()

    rp_id = config.rp_id
    ttl = config.revocation_ttl_seconds
"""

from __future__ import annotations

import logging
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class UserVerification(str, Enum):
    """WebAuthn user verification requirement."""

    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"


class RevocationFailurePolicy(str, Enum):
    """What the access gate does when the revocation store is unreachable."""

    AUTO = "auto"  # fail_closed in production, fail_open otherwise
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class DisclosurePolicy(str, Enum):
    """How selective disclosure treats a missing consent list."""

    PERMISSIVE = "permissive"  # no consent list -> disclose everything requested
    STRICT = "strict"  # no consent list -> disclose nothing


# COSE algorithm identifiers accepted for authenticator keys
COSE_ES256 = -7
COSE_EDDSA = -8
COSE_RS256 = -257
DEFAULT_SUPPORTED_ALGORITHMS = [COSE_ES256, COSE_EDDSA, COSE_RS256]

_MIN_SECRET_LENGTH = 32


class CoreSettings(BaseSettings):
    """Core configuration settings for Tessera.

    Settings can be configured via environment variables with the
    TESSERA_ prefix (e.g. ``TESSERA_RP_ID``).
    """

    model_config = SettingsConfigDict(
        env_prefix="TESSERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DEPLOYMENT
    # ==========================================================================

    environment: str = Field(
        default="development",
        description="Deployment mode: 'development' or 'production'",
    )

    # ==========================================================================
    # RELYING PARTY / WEBAUTHN
    # ==========================================================================

    rp_id: str = Field(default="localhost", description="WebAuthn relying party ID")
    rp_name: str = Field(default="Tessera", description="Relying party display name")
    origin: str = Field(
        default="http://localhost:5173",
        description="Exact origin expected in clientDataJSON",
    )
    user_verification: UserVerification | None = Field(
        default=None,
        description="required | preferred | discouraged (default: required in production, preferred otherwise)",
    )
    supported_algorithms: list[int] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_ALGORITHMS),
        description="COSE algorithm identifiers offered to authenticators",
    )
    approved_aaguids: list[str] = Field(
        default=[],
        description="Authenticator AAGUID allowlist, enforced in production when non-empty",
    )
    challenge_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Lifetime of an issued challenge (default: 5 minutes)",
    )

    # ==========================================================================
    # IDENTITY SECRETS
    # ==========================================================================

    did_salt: str | None = Field(
        default=None,
        description="Server-side salt mixed into global identifiers (REQUIRED in production)",
    )
    pairwise_secret: str | None = Field(
        default=None,
        description="HMAC key for pairwise identifiers (REQUIRED in production)",
    )
    pairwise_cache_size: int = Field(
        default=1000,
        ge=0,
        description="Max cached (global_id, relying_party_id) derivations; 0 disables",
    )

    # ==========================================================================
    # REVOCATION / DISCLOSURE POLICY
    # ==========================================================================

    revocation_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Default lifetime of a revocation marker (default: 5 minutes)",
    )
    revocation_failure_policy: RevocationFailurePolicy = Field(
        default=RevocationFailurePolicy.AUTO,
        description="auto | fail_open | fail_closed when the revocation store is unreachable",
    )
    disclosure_policy: DisclosurePolicy = Field(
        default=DisclosurePolicy.PERMISSIVE,
        description="permissive | strict handling of an absent consent list",
    )

    # ==========================================================================
    # BACKING STORE
    # ==========================================================================

    store_backend: str = Field(default="memory", description="Key-value backend: 'memory' or 'redis'")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_key_prefix: str = Field(default="tessera:", description="Namespace for every Redis key")

    # ==========================================================================
    # AUDIT
    # ==========================================================================

    audit_enabled: bool = Field(default=True, description="Record audit events")
    audit_log_path: str | None = Field(
        default=None,
        description="JSON-lines audit file (in-memory audit trail when unset)",
    )

    # ==========================================================================
    # LOGGING
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field(default="", description="Log format: 'json', 'text', or '' (auto-detect)")
    log_file: str | None = Field(default=None, description="Log file path (optional)")

    @field_validator("supported_algorithms")
    @classmethod
    def validate_algorithms(cls, v: list[int]) -> list[int]:
        unknown = [alg for alg in v if alg not in DEFAULT_SUPPORTED_ALGORITHMS]
        if unknown or not v:
            raise ValueError(f"supported_algorithms must be a non-empty subset of {DEFAULT_SUPPORTED_ALGORITHMS}, got {v}")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> CoreSettings:
        """Require explicit secrets and a durable store in production.

        Development deployments get random secrets, which means global and
        pairwise identifiers change across restarts.
        """
        if self.is_production:
            for name in ("did_salt", "pairwise_secret"):
                value = getattr(self, name)
                if not value:
                    raise ValueError(
                        f"TESSERA_{name.upper()} is required in production. "
                        "Generate one with: python -c 'import secrets; print(secrets.token_hex(32))'"
                    )
                if len(value) < _MIN_SECRET_LENGTH:
                    raise ValueError(f"TESSERA_{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters")
            if self.store_backend == "memory":
                raise ValueError("TESSERA_STORE_BACKEND=memory is not allowed in production (revocations would not survive restarts)")
        else:
            for name in ("did_salt", "pairwise_secret"):
                if not getattr(self, name):
                    logger.warning(f"Auto-generating {name} - identifiers will not persist across restarts")
                    object.__setattr__(self, name, secrets.token_hex(32))
        return self

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def effective_user_verification(self) -> UserVerification:
        """User verification level with the deployment-mode default applied."""
        if self.user_verification is not None:
            return self.user_verification
        return UserVerification.REQUIRED if self.is_production else UserVerification.PREFERRED

    @property
    def effective_failure_policy(self) -> RevocationFailurePolicy:
        """Resolve AUTO to a concrete policy for this deployment mode."""
        if self.revocation_failure_policy is not RevocationFailurePolicy.AUTO:
            return self.revocation_failure_policy
        if self.is_production:
            return RevocationFailurePolicy.FAIL_CLOSED
        return RevocationFailurePolicy.FAIL_OPEN

    @property
    def enforce_aaguid_allowlist(self) -> bool:
        return self.is_production and bool(self.approved_aaguids)


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
