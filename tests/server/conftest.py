"""Fixtures for the HTTP server tests."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from tessera.privacy.capabilities import Capability, Role, capabilities_for
from tessera.server.app import create_app
from tessera.server.auth import TokenStore
from tessera.server.config import ServerSettings, clear_settings_cache

from tests.helpers.fakes import make_server_settings


@pytest.fixture(autouse=True)
def reset_server_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings(tmp_path) -> ServerSettings:
    """Server settings; the root ``container`` fixture builds on these."""
    return make_server_settings(tmp_path)


@pytest.fixture
def token_store(settings) -> TokenStore:
    return TokenStore(settings.token_file)


@pytest.fixture
def app(settings, container, token_store):
    return create_app(settings, container, token_store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(token_store) -> dict[str, str]:
    token = token_store.create("admin-cli", capabilities_for(Role.ADMIN))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auditor_headers(token_store) -> dict[str, str]:
    token = token_store.create("auditor", capabilities_for(Role.AUDITOR))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def status_only_headers(token_store) -> dict[str, str]:
    token = token_store.create("portal", [Capability.READ_STATUS])
    return {"Authorization": f"Bearer {token}"}
