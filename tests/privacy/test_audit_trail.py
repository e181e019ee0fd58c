"""Tests for tessera.privacy.audit - hash-chained audit trail."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from tessera.privacy.audit import (
    REDACTED_PII_PLACEHOLDER,
    REDACTED_PLACEHOLDER,
    AuditAction,
    AuditEvent,
    AuditTrail,
    FileAuditBackend,
    InMemoryAuditBackend,
    MetadataSanitizer,
    create_audit_backend,
    verify_chain,
)

from tests.helpers.fakes import make_settings

GID = "did:tessera:" + "a" * 64


class TestSanitizer:
    def test_redacts_sensitive_keys(self):
        clean = MetadataSanitizer().sanitize({"public_key": "AAAA", "client-data": "x", "device_name": "iPhone"})
        assert clean == {"public_key": REDACTED_PLACEHOLDER, "client-data": REDACTED_PLACEHOLDER, "device_name": "iPhone"}

    def test_scrubs_pii(self):
        clean = MetadataSanitizer().sanitize({"note": "call asha@example.com or +1 555-123-4567", "list": ["123-45-6789"]})
        assert clean["note"] == f"call {REDACTED_PII_PLACEHOLDER} or {REDACTED_PII_PLACEHOLDER}"
        assert clean["list"] == [REDACTED_PII_PLACEHOLDER]

    def test_preserves_identifiers(self):
        meta = {"pairwise_id": "did:tessera:pairwise:" + "1" * 64, "reason": "pairwise"}
        assert MetadataSanitizer().sanitize(meta) == meta

    def test_nested(self):
        clean = MetadataSanitizer().sanitize({"outer": {"signature": "s", "count": 3}})
        assert clean == {"outer": {"signature": REDACTED_PLACEHOLDER, "count": 3}}


class TestEvents:
    def test_hash_covers_content(self):
        event = AuditEvent(action=AuditAction.REVOKE, actor="op", resource=GID, success=True)
        assert event.verify_hash()
        event.resource = "tampered"
        assert not event.verify_hash()

    def test_json_roundtrip(self):
        event = AuditEvent(action=AuditAction.DISCLOSURE, actor=GID, resource="health", success=True, metadata={"n": 1})
        assert AuditEvent.from_json(event.to_json()).to_dict() == event.to_dict()


class TestChain:
    def test_chain_links(self, audit):
        for action in (AuditAction.REVOKE, AuditAction.RESTORE, AuditAction.REVOKE):
            audit.record(action, actor="op", resource=GID, success=True)

        events = audit.backend.all_events()
        assert events[0].previous_hash is None
        assert events[1].previous_hash == events[0].event_hash
        assert audit.verify_chain() == (True, None)

    def test_detects_tampering(self, audit):
        for _ in range(3):
            audit.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)
        events = audit.backend.all_events()
        events[1].metadata = {"edited": True}

        valid, error = verify_chain(events)
        assert not valid
        assert error.event_index == 1

    def test_detects_dropped_event(self, audit):
        for _ in range(3):
            audit.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)
        events = audit.backend.all_events()
        valid, error = verify_chain([events[0], events[2]])
        assert not valid
        assert "previous_hash" in error.message


class TestTrail:
    def test_disabled(self):
        trail = AuditTrail(InMemoryAuditBackend(), enabled=False)
        assert trail.record(AuditAction.REVOKE, actor="op", resource=GID, success=True) is None
        assert trail.count() == 0

    def test_failure_is_swallowed_logged_and_counted(self, caplog):
        backend = MagicMock()
        backend.write.side_effect = OSError("disk full")
        trail = AuditTrail(backend)

        with caplog.at_level(logging.ERROR, logger="tessera.privacy.audit"):
            result = trail.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        assert result is None
        assert trail.failures == 1
        assert "AUDIT WRITE FAILED" in caplog.text

    def test_query_and_count(self, audit):
        audit.record(AuditAction.AUTHENTICATION_SUCCESS, actor=GID, resource=GID, success=True)
        audit.record(AuditAction.AUTHENTICATION_FAILURE, actor=GID, resource=GID, success=False)
        audit.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        assert [e.action for e in audit.query(actor=GID)] == [
            AuditAction.AUTHENTICATION_FAILURE,
            AuditAction.AUTHENTICATION_SUCCESS,
        ]
        assert len(audit.query(limit=1)) == 1
        assert audit.count(success=False) == 1
        assert audit.count(AuditAction.REVOKE) == 1

    def test_consent_history(self, audit):
        audit.record(
            AuditAction.DISCLOSURE,
            actor=GID,
            resource="health",
            success=True,
            metadata={"requested_fields": ["a", "b"], "consented_fields": ["a"], "disclosed_fields": ["a"]},
        )
        audit.record(AuditAction.DISCLOSURE, actor="did:tessera:other", resource="health", success=True)

        history = audit.consent_history(GID)
        assert len(history) == 1
        assert history[0]["relying_party_id"] == "health"
        assert history[0]["disclosed_fields"] == ["a"]
        assert history[0]["consented_fields"] == ["a"]

    def test_in_memory_trim(self):
        backend = InMemoryAuditBackend(max_events=2)
        trail = AuditTrail(backend)
        for _ in range(3):
            trail.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)
        assert len(backend.all_events()) == 2
        backend.clear()
        assert backend.all_events() == []


class TestFileBackend:
    def test_persists_json_lines(self, tmp_path):
        path = tmp_path / "audit" / "events.jsonl"
        trail = AuditTrail(FileAuditBackend(path))
        trail.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        lines = path.read_text().splitlines()
        assert json.loads(lines[0])["action"] == "revoke"

    def test_chain_continues_after_restart(self, tmp_path):
        path = tmp_path / "events.jsonl"
        AuditTrail(FileAuditBackend(path)).record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        reopened = AuditTrail(FileAuditBackend(path))
        reopened.record(AuditAction.RESTORE, actor="op", resource=GID, success=True)

        assert reopened.verify_chain() == (True, None)
        assert len(reopened.backend.all_events()) == 2

    def test_skips_malformed_lines(self, tmp_path):
        path = tmp_path / "events.jsonl"
        path.write_text("not json\n")
        assert FileAuditBackend(path).all_events() == []

    def test_queries_served_from_memory(self, tmp_path):
        path = tmp_path / "events.jsonl"
        trail = AuditTrail(FileAuditBackend(path))
        for _ in range(3):
            trail.record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        with patch("builtins.open", side_effect=AssertionError("audit log re-read")):
            assert len(trail.query(actor="op")) == 3
            assert trail.count(AuditAction.REVOKE) == 3

    def test_picks_up_lines_from_another_writer(self, tmp_path):
        path = tmp_path / "events.jsonl"
        reader = FileAuditBackend(path)
        AuditTrail(FileAuditBackend(path)).record(AuditAction.REVOKE, actor="op", resource=GID, success=True)

        assert [e.action for e in reader.all_events()] == [AuditAction.REVOKE]

    def test_truncated_file_is_reloaded(self, tmp_path):
        path = tmp_path / "events.jsonl"
        backend = FileAuditBackend(path)
        AuditTrail(backend).record(AuditAction.REVOKE, actor="op", resource=GID, success=True)
        path.write_text("")

        assert backend.all_events() == []

    def test_factory(self, tmp_path):
        assert isinstance(create_audit_backend(make_settings()), InMemoryAuditBackend)
        backend = create_audit_backend(make_settings(audit_log_path=str(tmp_path / "a.jsonl")))
        assert isinstance(backend, FileAuditBackend)


@pytest.mark.parametrize("action", list(AuditAction))
def test_every_action_records(audit, action):
    assert audit.record(action, actor="op", resource=GID, success=True) is not None
