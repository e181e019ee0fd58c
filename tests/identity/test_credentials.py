"""Tests for tessera.identity.credentials - CredentialStore and counter checks."""

from __future__ import annotations

import threading

import pytest

from tessera.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    StoreUnavailableError,
    WebAuthnVerificationError,
)
from tessera.identity.credentials import RECORD_PREFIX, CredentialRecord, CredentialStore, check_sign_count
from tessera.storage.backends import MemoryBackend


def make_record(n: int = 1, sign_count: int = 5, fingerprint: str | None = None) -> CredentialRecord:
    return CredentialRecord(
        global_id=f"did:tessera:{n:064x}",
        credential_id=f"cred-{n}",
        public_key=b"\x30\x59" + bytes([n]) * 10,
        algorithm=-7,
        sign_count=sign_count,
        hardware_fingerprint=fingerprint or f"fp-{n}",
    )


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore(MemoryBackend())


class TestCheckSignCount:
    @pytest.mark.parametrize("stored,presented", [(0, 1), (5, 6), (5, 100)])
    def test_accepts_increase(self, stored, presented):
        check_sign_count(stored, presented)

    def test_both_zero_skips_check(self):
        check_sign_count(0, 0)

    @pytest.mark.parametrize("stored,presented", [(5, 5), (5, 4), (1, 0)])
    def test_rejects_non_increasing(self, stored, presented):
        with pytest.raises(WebAuthnVerificationError) as exc_info:
            check_sign_count(stored, presented)
        assert exc_info.value.code is ErrorCode.REPLAY_DETECTED


class TestRecord:
    def test_json_roundtrip(self):
        record = make_record()
        restored = CredentialRecord.from_json(record.to_json())
        assert restored == record
        assert isinstance(restored.public_key, bytes)

    def test_descriptor(self):
        assert make_record().descriptor() == {"type": "public-key", "id": "cred-1"}


class TestCreate:
    def test_create_and_lookup(self, store):
        record = store.create(make_record())
        assert store.get(record.global_id) == record
        assert store.find_by_fingerprint("fp-1") == record
        assert store.find_by_credential_id("cred-1") == record
        assert store.count() == 1

    def test_duplicate_fingerprint(self, store):
        store.create(make_record(1, fingerprint="same"))
        with pytest.raises(ConflictError) as exc_info:
            store.create(make_record(2, fingerprint="same"))
        assert exc_info.value.existing_id == make_record(1).global_id
        assert store.count() == 1

    def test_duplicate_credential_id_rolls_back_fingerprint(self, store):
        store.create(make_record(1))
        dup = make_record(2)
        dup.credential_id = "cred-1"
        with pytest.raises(ConflictError):
            store.create(dup)
        # fingerprint index for the rejected record was released
        assert store.find_by_fingerprint("fp-2") is None

    def test_outage_on_record_write_releases_indexes(self):
        backend = MemoryBackend()
        store = CredentialStore(backend)
        real_set_if_absent = backend.set_if_absent

        def failing_set_if_absent(key, value, *args, **kwargs):
            if key.startswith(RECORD_PREFIX):
                raise StoreUnavailableError("down", backend="memory")
            return real_set_if_absent(key, value, *args, **kwargs)

        backend.set_if_absent = failing_set_if_absent
        with pytest.raises(StoreUnavailableError):
            store.create(make_record())
        assert backend.get("fingerprint:fp-1") is None
        assert backend.get("credential-id:cred-1") is None

        backend.set_if_absent = real_set_if_absent
        assert store.create(make_record()).global_id == make_record().global_id
        assert store.count() == 1

    def test_concurrent_same_device_single_winner(self, store):
        outcomes = []
        barrier = threading.Barrier(8)

        def worker(n):
            barrier.wait()
            try:
                store.create(make_record(n, fingerprint="shared-device"))
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert store.count() == 1


class TestCounter:
    def test_update_counter(self, store):
        record = store.create(make_record(sign_count=5))
        updated = store.update_counter(record.global_id, 6)
        assert updated.sign_count == 6
        assert store.get(record.global_id).sign_count == 6

    def test_stale_counter_leaves_record_untouched(self, store):
        record = store.create(make_record(sign_count=5))
        with pytest.raises(WebAuthnVerificationError):
            store.update_counter(record.global_id, 5)
        assert store.get(record.global_id).sign_count == 5

    def test_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update_counter("did:tessera:missing", 1)

    def test_concurrent_same_counter_single_winner(self, store):
        record = store.create(make_record(sign_count=5))
        outcomes = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                store.update_counter(record.global_id, 6)
                outcomes.append("ok")
            except WebAuthnVerificationError as e:
                outcomes.append(e.code)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count(ErrorCode.REPLAY_DETECTED) == 7
        assert store.get(record.global_id).sign_count == 6

    def test_lost_race_reports_replay(self):
        backend = MemoryBackend()
        store = CredentialStore(backend)
        record = store.create(make_record(sign_count=5))
        backend.compare_and_set = lambda *args: False
        with pytest.raises(WebAuthnVerificationError) as exc_info:
            store.update_counter(record.global_id, 6)
        assert exc_info.value.code is ErrorCode.REPLAY_DETECTED


class TestMetadataAndDelete:
    def test_update_device_metadata(self, store):
        record = store.create(make_record())
        updated = store.update_device_metadata(record.global_id, "PC", "Windows PC")
        assert updated.device_name == "Windows PC"
        assert store.get(record.global_id).device_type == "PC"

    def test_update_device_metadata_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update_device_metadata("did:tessera:missing", "PC", "Mac")

    def test_require(self, store):
        with pytest.raises(NotFoundError):
            store.require("did:tessera:missing")

    def test_delete_removes_indexes(self, store):
        record = store.create(make_record())
        assert store.delete(record.global_id) is True
        assert store.get(record.global_id) is None
        assert store.find_by_fingerprint("fp-1") is None
        assert store.find_by_credential_id("cred-1") is None
        assert store.delete(record.global_id) is False
        # the device can enroll again
        store.create(make_record())

    def test_interrupted_delete_can_be_repeated(self):
        backend = MemoryBackend()
        store = CredentialStore(backend)
        record = store.create(make_record())
        real_delete = backend.delete
        calls = []

        def failing_delete(key):
            calls.append(key)
            if len(calls) == 2:
                raise StoreUnavailableError("down", backend="memory")
            return real_delete(key)

        backend.delete = failing_delete
        with pytest.raises(StoreUnavailableError):
            store.delete(record.global_id)
        assert store.get(record.global_id) == record

        backend.delete = real_delete
        assert store.delete(record.global_id) is True
        assert store.get(record.global_id) is None
        assert store.find_by_fingerprint("fp-1") is None
