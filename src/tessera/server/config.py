# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Server configuration using pydantic-settings."""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pydantic import Field, model_validator

from ..core.config import CoreSettings

logger = logging.getLogger(__name__)


def get_package_version() -> str:
    """Installed package version, or a dev fallback when running from source."""
    try:
        return version("tessera-identity")
    except PackageNotFoundError:
        return "0.0.0-dev"


class ServerSettings(CoreSettings):
    """Configuration for the Tessera HTTP server.

    Inherits the identity core settings and adds HTTP, CORS, operator token
    and rate limit settings. Same TESSERA_ environment prefix.
    """

    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int = Field(default=8400, description="Port to bind to")

    token_file: Path = Field(
        default=Path("/opt/tessera/config/tokens.json"),
        description="Path to operator token storage file",
    )

    allowed_origins: list[str] = Field(
        default=[],
        description="Allowed CORS origins. Empty = same-origin only.",
    )

    # Per client IP, applied to the WebAuthn ceremony endpoints
    rate_limit_rpm: int = Field(default=30, ge=1, description="Ceremony requests per minute per client")

    protected_path_prefixes: list[str] = Field(
        default=["/api/v1/verify-access"],
        description="Paths whose requests must pass the revocation check",
    )

    server_name: str = Field(default="tessera", description="Server name reported by /health")
    server_version: str = Field(default_factory=get_package_version, description="Server version")

    @model_validator(mode="after")
    def validate_server_settings(self) -> ServerSettings:
        """Refuse wildcard CORS in production."""
        if self.is_production and "*" in self.allowed_origins:
            raise ValueError("TESSERA_ALLOWED_ORIGINS must not contain '*' in production")
        return self


# Global settings instance - lazy loaded
_settings: ServerSettings | None = None


def get_settings() -> ServerSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _settings
    _settings = None
