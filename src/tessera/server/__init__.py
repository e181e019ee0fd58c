# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Tessera HTTP API.

Exposes the enrollment, authentication, authorization and revocation
operations over Starlette.

Usage:
    # Start the server
    tessera-server

    # Or with uvicorn directly
    uvicorn tessera.server.app:create_app --factory --port 8400

    # Manage operator tokens
    tessera-token create --client-id "ops-laptop" --role operator
    tessera-token list
    tessera-token revoke --client-id "ops-laptop"
"""

from .auth import TokenStore
from .config import ServerSettings, get_settings

__all__ = [
    "ServerSettings",
    "get_settings",
    "TokenStore",
]
