"""Global test fixtures for the Tessera test suite."""

from __future__ import annotations

import os

import pytest

from tessera.core.config import CoreSettings, clear_config_cache
from tessera.core.container import IdentityContainer, build_container
from tessera.core.repositories import InMemoryProfileRepository
from tessera.identity.ceremony import ClientContext
from tessera.privacy.audit import AuditTrail, InMemoryAuditBackend
from tessera.storage.backends import MemoryBackend, RedisBackend

from tests.helpers.authenticator import SoftwareAuthenticator
from tests.helpers.fakes import (
    IPHONE_UA,
    FakeClock,
    enroll,
    make_redis_backend,
    make_settings,
    make_unreachable_redis_backend,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip TESSERA_* variables so tests never see the developer's environment."""
    for key in list(os.environ):
        if key.startswith("TESSERA_"):
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def settings() -> CoreSettings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def audit() -> AuditTrail:
    return AuditTrail(InMemoryAuditBackend())


@pytest.fixture
def redis_store() -> dict:
    return {}


@pytest.fixture
def redis_backend(redis_store) -> RedisBackend:
    return make_redis_backend(redis_store)


@pytest.fixture
def unreachable_backend() -> RedisBackend:
    return make_unreachable_redis_backend()


@pytest.fixture
def profiles() -> InMemoryProfileRepository:
    return InMemoryProfileRepository()


@pytest.fixture
def container(settings, backend, profiles) -> IdentityContainer:
    return build_container(settings, backend=backend, audit_backend=InMemoryAuditBackend(), profiles=profiles)


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator()


@pytest.fixture
def client_context() -> ClientContext:
    return ClientContext(ip_address="203.0.113.7", user_agent=IPHONE_UA)


@pytest.fixture
def enrolled(container, authenticator, client_context) -> str:
    """Global id of an identity enrolled with ``authenticator``."""
    return enroll(container, authenticator, client_context)
