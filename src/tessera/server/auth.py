# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Operator token authentication for the administrative endpoints.

Revoke, restore, status and audit endpoints require a Bearer token. Tokens
are stored hashed in a JSON file and carry a set of capabilities.

Usage in endpoints::

    client = authenticate(request)
    if isinstance(client, JSONResponse):
        return client
    denied = require_capability(client, Capability.REVOKE)
    if denied:
        return denied
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse

from ..privacy.capabilities import Capability
from .errors import AUTH_INVALID_TOKEN, AUTH_MISSING_TOKEN, auth_error, forbidden_error, service_unavailable_error

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "tt_"


@dataclass
class Token:
    """A stored operator token (only the hash is kept)."""

    token_hash: str
    client_id: str
    capabilities: list[str] = field(default_factory=lambda: [Capability.READ_STATUS.value])
    expires_at: float | None = None
    created_at: float = field(default_factory=time.time)
    description: str = ""

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at

    def has_capability(self, capability: Capability) -> bool:
        return capability.value in self.capabilities

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_hash": self.token_hash,
            "client_id": self.client_id,
            "capabilities": self.capabilities,
            "expires_at": self.expires_at,
            "created_at": self.created_at,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        return cls(
            token_hash=data["token_hash"],
            client_id=data["client_id"],
            capabilities=data.get("capabilities", [Capability.READ_STATUS.value]),
            expires_at=data.get("expires_at"),
            created_at=data.get("created_at", time.time()),
            description=data.get("description", ""),
        )


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token() -> str:
    return f"{TOKEN_PREFIX}{secrets.token_hex(32)}"


class TokenStore:
    """File-based token storage with hashed tokens."""

    def __init__(self, token_file: Path):
        self.token_file = Path(token_file)
        self._tokens: dict[str, Token] = {}
        self._load()

    def _load(self) -> None:
        if not self.token_file.exists():
            self._tokens = {}
            return
        try:
            with open(self.token_file) as f:
                data = json.load(f)
            self._tokens = {t["token_hash"]: Token.from_dict(t) for t in data.get("tokens", [])}
            logger.info(f"Loaded {len(self._tokens)} tokens from {self.token_file}")
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"Failed to load tokens from {self.token_file}: {e}")
            self._tokens = {}

    def _save(self) -> None:
        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.token_file, "w") as f:
            json.dump({"tokens": [t.to_dict() for t in self._tokens.values()]}, f, indent=2)
        self.token_file.chmod(0o600)

    def create(
        self,
        client_id: str,
        capabilities: list[Capability] | frozenset[Capability],
        description: str = "",
        expires_at: float | None = None,
    ) -> str:
        """Create a token and return the raw value (shown only once)."""
        raw_token = generate_token()
        token = Token(
            token_hash=hash_token(raw_token),
            client_id=client_id,
            capabilities=sorted(c.value for c in capabilities),
            expires_at=expires_at,
            description=description,
        )
        self._tokens[token.token_hash] = token
        self._save()
        logger.info(f"Created token for client '{client_id}' with {token.capabilities}")
        return raw_token

    def verify(self, raw_token: str) -> Token | None:
        if not raw_token:
            return None
        if raw_token.startswith("Bearer "):
            raw_token = raw_token[7:]

        token = self._tokens.get(hash_token(raw_token))
        if token is None:
            logger.warning("Token not found")
            return None
        if token.is_expired():
            logger.debug(f"Token for client '{token.client_id}' is expired")
            return None
        return token

    def revoke(self, token_hash: str) -> bool:
        token = self._tokens.pop(token_hash, None)
        if token is None:
            return False
        self._save()
        logger.info(f"Revoked token for client '{token.client_id}'")
        return True

    def list_tokens(self) -> list[Token]:
        return list(self._tokens.values())

    def get_by_client_id(self, client_id: str) -> list[Token]:
        return [t for t in self._tokens.values() if t.client_id == client_id]


@dataclass
class AuthenticatedClient:
    client_id: str
    capabilities: frozenset[Capability]


def authenticate(request: Request) -> AuthenticatedClient | JSONResponse:
    """Authenticate an operator request. Returns the client or an error response."""
    store: TokenStore | None = getattr(request.app.state, "token_store", None)
    if store is None:
        return service_unavailable_error("Token store")

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return auth_error("Missing or invalid authentication token", code=AUTH_MISSING_TOKEN)

    token = store.verify(auth_header)
    if token is None:
        return auth_error("Invalid authentication token", code=AUTH_INVALID_TOKEN)

    known = {c.value for c in Capability}
    capabilities = frozenset(Capability(c) for c in token.capabilities if c in known)
    return AuthenticatedClient(client_id=token.client_id, capabilities=capabilities)


def require_capability(client: AuthenticatedClient, capability: Capability) -> JSONResponse | None:
    """Return a 403 response when ``client`` lacks ``capability``, else None."""
    if capability in client.capabilities:
        return None
    logger.warning(f"Client '{client.client_id}' lacks capability '{capability.value}'")
    return forbidden_error(f"Missing capability: {capability.value}")
