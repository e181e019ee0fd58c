"""Tests for tessera.core.logging."""

from __future__ import annotations

import json
import logging

import pytest

from tessera.core.logging import (
    REDACTED,
    JSONFormatter,
    StandardFormatter,
    configure_logging,
    correlation_context,
    get_correlation_id,
    redact,
    set_correlation_id,
    short_id,
)


def _record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("tessera.test", level, __file__, 10, msg, None, None)


class TestCorrelation:
    def test_context_sets_and_resets(self):
        assert get_correlation_id() is None
        with correlation_context("abc") as cid:
            assert cid == "abc"
            assert get_correlation_id() == "abc"
        assert get_correlation_id() is None

    def test_context_generates_id(self):
        with correlation_context() as cid:
            assert len(cid) == 36

    def test_set_correlation_id(self):
        set_correlation_id("x")
        try:
            assert get_correlation_id() == "x"
        finally:
            set_correlation_id(None)


class TestRedaction:
    def test_short_id(self):
        assert short_id(None) == "<none>"
        assert short_id("did:tessera:short") == "did:tessera:short"
        assert short_id("did:tessera:" + "a" * 64) == "did:tessera:aaaaaaaa..."

    def test_redacts_sensitive_keys(self):
        data = {"public_key": "AAAA", "nested": {"challenge": "c", "ok": 1}, "items": [{"signature": "s"}]}
        assert redact(data) == {"public_key": REDACTED, "nested": {"challenge": REDACTED, "ok": 1}, "items": [{"signature": REDACTED}]}

    def test_truncates_long_strings(self):
        assert redact("a" * 600).endswith("...")


class TestFormatters:
    def test_json_formatter(self):
        with correlation_context("cid-1"):
            out = json.loads(JSONFormatter().format(_record()))
        assert out["message"] == "hello"
        assert out["correlation_id"] == "cid-1"
        assert "source" not in out

    def test_json_formatter_warning_has_source(self):
        out = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert out["source"]["line"] == 10

    def test_json_formatter_redacts_extra(self):
        record = _record()
        record.extra_data = {"pairwise_secret": "oops"}
        out = json.loads(JSONFormatter().format(record))
        assert out["extra"]["pairwise_secret"] == REDACTED

    def test_standard_formatter_prefixes_correlation(self):
        formatter = StandardFormatter(use_colors=False)
        with correlation_context("12345678-aaaa"):
            line = formatter.format(_record())
        assert "[12345678] hello" in line


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        configure_logging("DEBUG", json_format=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_log_file_uses_json(self, tmp_path):
        path = tmp_path / "tessera.log"
        configure_logging("INFO", json_format=False, log_file=str(path))
        root = logging.getLogger()
        assert isinstance(root.handlers[0].formatter, StandardFormatter)
        assert isinstance(root.handlers[1].formatter, JSONFormatter)
        for handler in root.handlers[1:]:
            handler.close()

    def test_env_format(self, monkeypatch):
        monkeypatch.setenv("TESSERA_LOG_FORMAT", "json")
        configure_logging()
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)
