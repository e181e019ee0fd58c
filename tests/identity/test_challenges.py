"""Tests for tessera.identity.challenges - single-use challenge cache."""

from __future__ import annotations

import threading

import pytest

from tessera.identity.challenges import CHALLENGE_BYTES, ChallengeCache, ChallengePurpose, ChallengeRecord
from tessera.storage.backends import MemoryBackend


@pytest.fixture
def cache(clock) -> ChallengeCache:
    return ChallengeCache(MemoryBackend(clock=clock), timeout_seconds=300, clock=clock)


class TestIssue:
    def test_issue(self, cache, clock):
        record = cache.issue(ChallengePurpose.ENROLLMENT)
        assert len(record.challenge) == CHALLENGE_BYTES
        assert record.expires_at == clock.now + 300
        assert record.global_id is None
        assert cache.timeout_seconds == 300

    def test_challenges_are_unique(self, cache):
        a = cache.issue(ChallengePurpose.ENROLLMENT)
        b = cache.issue(ChallengePurpose.ENROLLMENT)
        assert a.session_token != b.session_token
        assert a.challenge != b.challenge

    def test_json_roundtrip_keeps_purpose_and_binding(self, cache):
        record = cache.issue(ChallengePurpose.AUTHENTICATION, global_id="did:tessera:abc")
        assert ChallengeRecord.from_json(record.to_json()) == record


class TestConsume:
    def test_consume_once(self, cache):
        record = cache.issue(ChallengePurpose.AUTHENTICATION, global_id="did:tessera:abc")
        assert cache.consume(record.session_token) == record
        assert cache.consume(record.session_token) is None

    def test_unknown_token(self, cache):
        assert cache.consume("never-issued") is None

    def test_expired(self, cache, clock):
        record = cache.issue(ChallengePurpose.ENROLLMENT)
        clock.advance(300)
        assert cache.consume(record.session_token) is None

    def test_record_expiry_checked_even_if_backend_keeps_it(self, clock):
        # Backend clock lags behind wall clock, so the TTL has not fired yet
        backend_clock_start = clock.now
        lagging = MemoryBackend(clock=lambda: backend_clock_start)
        cache = ChallengeCache(lagging, timeout_seconds=60, clock=clock)
        record = cache.issue(ChallengePurpose.ENROLLMENT)
        clock.advance(61)
        assert cache.peek(record.session_token) is None
        assert cache.consume(record.session_token) is None

    def test_concurrent_consume_single_winner(self, cache):
        record = cache.issue(ChallengePurpose.AUTHENTICATION, global_id="did:tessera:abc")
        results = []
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            results.append(cache.consume(record.session_token))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is not None) == 1


class TestPeekAndCleanup:
    def test_peek_does_not_consume(self, cache):
        record = cache.issue(ChallengePurpose.AUTHENTICATION, global_id="did:tessera:abc")
        assert cache.peek(record.session_token) == record
        assert cache.consume(record.session_token) == record

    def test_cleanup_expired(self, clock):
        frozen = clock.now
        backend = MemoryBackend(clock=lambda: frozen)
        cache = ChallengeCache(backend, timeout_seconds=10, clock=clock)
        cache.issue(ChallengePurpose.ENROLLMENT)
        stale = cache.issue(ChallengePurpose.ENROLLMENT)
        clock.advance(5)
        fresh = cache.issue(ChallengePurpose.ENROLLMENT)
        clock.advance(6)

        assert cache.cleanup_expired() == 2
        assert cache.peek(fresh.session_token) == fresh
        assert cache.peek(stale.session_token) is None
