# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Key-value backends shared by the identity and privacy layers."""

from .backends import KeyValueBackend, MemoryBackend, RedisBackend, create_backend

__all__ = ["KeyValueBackend", "MemoryBackend", "RedisBackend", "create_backend"]
