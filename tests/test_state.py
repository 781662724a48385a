"""Tests for state records, lease locks and the state stores"""

import os

import pytest

from conftest import FakeClock
from convergence.backends.local import (
    UNREADABLE_LOCK_GRACE_SECONDS,
    UNREADABLE_LOCK_ID,
    FileStateStore,
)
from convergence.backends.memory import InMemoryStateStore
from convergence.errors import BackendUnavailableError, LockContentionError
from convergence.state import (
    ConvergenceState,
    ResourceRecord,
    acquire_lock,
    clear_stale_locks,
)

KEY = "static-website-infrastructure/acme-sites/state"


def record(address, domain="example-com-prd"):
    return ResourceRecord(address=address, kind="bucket", name=address, domain=domain)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStateStore()
    return FileStateStore(tmp_path)


class TestConvergenceState:
    def test_dict_round_trip(self):
        state = ConvergenceState(KEY, serial=3)
        state.record(
            ResourceRecord(
                address="example-com-prd.bucket",
                kind="bucket",
                name="example-com-prd-site",
                domain="example-com-prd",
                inputs={"versioning": True},
                outputs={"arn": "arn:aws:s3:::example-com-prd-site"},
                depends_on=[],
                tags={"Environment": "prd"},
            )
        )
        state.domains["example-com-prd"] = {"domain_name": "example.com", "environment": "prd"}
        assert ConvergenceState.from_dict(state.to_dict()) == state

    def test_forget_drops_empty_domain(self):
        state = ConvergenceState(KEY)
        state.record(record("example-com-prd.bucket"))
        state.record(record("example-com-prd.zone"))
        state.domains["example-com-prd"] = {"domain_name": "example.com", "environment": "prd"}

        state.forget("example-com-prd.bucket")
        assert "example-com-prd" in state.domains
        state.forget("example-com-prd.zone")
        assert state.domains == {}


class TestAcquireLock:
    def test_acquires_free_lock(self, any_store):
        clock = FakeClock()
        lock = acquire_lock(any_store, KEY, "alice", "apply", 60, clock=clock, sleep=clock.sleep)
        assert lock.holder == "alice"
        assert lock.expires_at == clock.now + 60
        assert any_store.locks(KEY) == [lock]

    def test_contention_after_bounded_backoff(self, any_store):
        clock = FakeClock()
        acquire_lock(any_store, KEY, "alice", "apply", 3600, clock=clock, sleep=clock.sleep)
        with pytest.raises(LockContentionError, match="alice"):
            acquire_lock(
                any_store,
                KEY,
                "bob",
                "apply",
                3600,
                attempts=4,
                backoff_seconds=1.0,
                clock=clock,
                sleep=clock.sleep,
            )
        assert clock.sleeps == [1.0, 2.0, 4.0]

    def test_expired_lease_is_cleared(self, any_store):
        clock = FakeClock()
        stale = acquire_lock(any_store, KEY, "alice", "apply", 10, clock=clock, sleep=clock.sleep)
        clock.now += 11

        fresh = acquire_lock(any_store, KEY, "bob", "destroy", 60, clock=clock, sleep=clock.sleep)
        assert fresh.holder == "bob"
        assert fresh.fence > stale.fence
        assert clock.sleeps == []

    def test_live_lease_is_not_cleared(self, any_store):
        clock = FakeClock()
        acquire_lock(any_store, KEY, "alice", "apply", 10, clock=clock, sleep=clock.sleep)
        assert clear_stale_locks(any_store, KEY, clock.now + 5) == []
        assert len(any_store.locks(KEY)) == 1


class TestFencing:
    def test_write_with_current_fence(self, any_store):
        lock = any_store.acquire(KEY, "alice", "apply", 60, now=0)
        state = ConvergenceState(KEY, serial=1)
        state.record(record("example-com-prd.bucket"))
        any_store.write(state, lock)
        assert any_store.read(KEY) == state

    def test_stale_holder_cannot_write(self, any_store):
        old = any_store.acquire(KEY, "alice", "apply", 10, now=0)
        clear_stale_locks(any_store, KEY, now=20)
        any_store.acquire(KEY, "bob", "apply", 10, now=20)

        with pytest.raises(LockContentionError, match="fence"):
            any_store.write(ConvergenceState(KEY, serial=99), old)

    def test_renew_after_break(self, any_store):
        lock = any_store.acquire(KEY, "alice", "apply", 10, now=0)
        any_store.break_lock(KEY, lock.lock_id)
        with pytest.raises(LockContentionError):
            any_store.renew(lock, 10, now=5)

    def test_release_is_idempotent(self, any_store):
        lock = any_store.acquire(KEY, "alice", "apply", 10, now=0)
        any_store.release(lock)
        any_store.release(lock)
        assert any_store.locks(KEY) == []

    def test_read_missing_state(self, any_store):
        assert any_store.read(KEY) == ConvergenceState(KEY)


class TestFileStateStore:
    def test_files_per_key(self, tmp_path):
        store = FileStateStore(tmp_path)
        lock = store.acquire(KEY, "alice", "apply", 60, now=0)
        store.write(ConvergenceState(KEY), lock)
        names = {p.name for p in tmp_path.iterdir()}
        slug = "static-website-infrastructure__acme-sites__state"
        assert {f"{slug}.json", f"{slug}.lock", f"{slug}.fence"} <= names

    def test_second_acquire_refused(self, tmp_path):
        store = FileStateStore(tmp_path)
        assert store.acquire(KEY, "alice", "apply", 60, now=0) is not None
        assert FileStateStore(tmp_path).acquire(KEY, "bob", "apply", 60, now=0) is None

    def test_missing_directory(self, tmp_path):
        with pytest.raises(BackendUnavailableError):
            FileStateStore(tmp_path / "absent").read(KEY)


class TestUnreadableLockFile:
    """A lock file left empty by a holder that died right after creating it."""

    @pytest.fixture
    def store(self, tmp_path):
        path = tmp_path / "static-website-infrastructure__acme-sites__state.lock"
        path.write_text("", encoding="utf-8")
        os.utime(path, (1000, 1000))
        return FileStateStore(tmp_path)

    def test_reported_with_lease_from_mtime(self, store):
        [lock] = store.locks(KEY)
        assert lock.lock_id == UNREADABLE_LOCK_ID
        assert lock.holder == "unknown"
        assert lock.expires_at == 1000 + UNREADABLE_LOCK_GRACE_SECONDS

    def test_blocks_within_grace(self, store):
        with pytest.raises(LockContentionError, match="unknown"):
            acquire_lock(store, KEY, "bob", "apply", 3600, attempts=1, clock=lambda: 1010.0)

    def test_cleared_once_expired(self, store):
        lock = acquire_lock(store, KEY, "bob", "apply", 3600, attempts=1, clock=lambda: 5000.0)
        assert lock.holder == "bob"
        assert store.locks(KEY) == [lock]

    def test_broken_by_id(self, store):
        store.break_lock(KEY, UNREADABLE_LOCK_ID)
        assert store.locks(KEY) == []
        assert store.acquire(KEY, "bob", "apply", 60, now=1010) is not None


class TestInMemoryStateStore:
    def test_unavailable(self):
        store = InMemoryStateStore()
        store.available = False
        with pytest.raises(BackendUnavailableError):
            store.read(KEY)
