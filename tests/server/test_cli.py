"""Tests for the tessera-token command line."""

from __future__ import annotations

import stat

import pytest

from tessera.server.auth import TokenStore, hash_token
from tessera.server.cli import main, save_token_securely


@pytest.fixture
def token_file(tmp_path):
    return tmp_path / "tokens.json"


def run(token_file, *args) -> int:
    return main(["--token-file", str(token_file), *args])


def create(token_file, tmp_path, *extra) -> str:
    """Create a token through the CLI and return the raw value from its file."""
    out = tmp_path / "out"
    out.mkdir(exist_ok=True)
    before = set(out.iterdir())
    assert run(token_file, "create", "-c", "ops-laptop", "--output-dir", str(out), *extra) == 0
    (new_file,) = set(out.iterdir()) - before
    return new_file.read_text().strip()


class TestCreate:
    def test_default_role_is_operator(self, token_file, tmp_path, capsys):
        raw = create(token_file, tmp_path)

        output = capsys.readouterr().out
        assert raw not in output
        assert "Token file:" in output
        assert TokenStore(token_file).verify(raw).capabilities == ["read_status", "restore", "revoke"]

    def test_role(self, token_file, tmp_path):
        raw = create(token_file, tmp_path, "--role", "auditor")
        assert TokenStore(token_file).verify(raw).capabilities == ["read_audit", "read_status"]

    def test_explicit_capabilities_override_role(self, token_file, tmp_path):
        raw = create(token_file, tmp_path, "--role", "admin", "--capabilities", "read_status")
        assert TokenStore(token_file).verify(raw).capabilities == ["read_status"]

    def test_unknown_capability(self, token_file, capsys):
        assert run(token_file, "create", "-c", "x", "--capabilities", "launch_missiles") == 1
        assert "Invalid capability or role" in capsys.readouterr().err

    def test_expiry(self, token_file, tmp_path):
        raw = create(token_file, tmp_path, "--expires-days", "1")
        assert TokenStore(token_file).verify(raw).expires_at is not None

    def test_token_file_permissions(self, tmp_path):
        path = save_token_securely("ops/laptop", "tt_secret", tmp_path)

        assert path.parent == tmp_path
        assert "/" not in path.name
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert path.read_text() == "tt_secret\n"


class TestList:
    def test_empty(self, token_file, capsys):
        assert run(token_file, "list") == 0
        assert "No tokens found." in capsys.readouterr().out

    def test_lists_tokens(self, token_file, tmp_path, capsys):
        create(token_file, tmp_path)
        capsys.readouterr()

        assert run(token_file, "list") == 0
        output = capsys.readouterr().out
        assert "ops-laptop" in output
        assert "Total: 1 token(s)" in output


class TestRevoke:
    def test_by_client_id(self, token_file, tmp_path, capsys):
        raw = create(token_file, tmp_path)

        assert run(token_file, "revoke", "--client-id", "ops-laptop") == 0
        assert "Revoked 1 token(s)" in capsys.readouterr().out
        assert TokenStore(token_file).verify(raw) is None

    def test_by_token_and_hash(self, token_file, tmp_path):
        first = create(token_file, tmp_path)
        second = create(token_file, tmp_path)

        assert run(token_file, "revoke", "--token", first) == 0
        assert run(token_file, "revoke", "--hash", hash_token(second)) == 0
        assert TokenStore(token_file).list_tokens() == []

    def test_not_found(self, token_file, capsys):
        assert run(token_file, "revoke", "--token", "tt_nope") == 1
        assert "Token not found." in capsys.readouterr().out

    def test_requires_selector(self, token_file, capsys):
        assert run(token_file, "revoke") == 1
        assert "Must provide" in capsys.readouterr().out


class TestVerify:
    def test_valid(self, token_file, tmp_path, capsys):
        raw = create(token_file, tmp_path)
        capsys.readouterr()

        assert run(token_file, "verify", raw) == 0
        assert "Token is VALID" in capsys.readouterr().out

    def test_invalid(self, token_file, capsys):
        assert run(token_file, "verify", "tt_nope") == 1
        assert "Token is INVALID" in capsys.readouterr().out


def test_command_required(token_file):
    with pytest.raises(SystemExit):
        main(["--token-file", str(token_file)])
