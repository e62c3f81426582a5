"""Unit tests for state locks and bounded lock retry."""

from __future__ import annotations

import json

import pytest

from envpromote.config.types import LockPolicy
from envpromote.errors import ExecutionError, LockTimeout, LockUnavailable
from envpromote.locks import FileStateLock, hold_lock, retry_on_lock
from tests.fakes import FakeClock


class _Flaky:
    """Raise LockUnavailable for the first ``failures`` calls."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise LockUnavailable("dev", "held by ci-42")
        return "ok"


class TestRetryOnLock:
    def test_returns_immediately_without_contention(self, fake_clock: FakeClock) -> None:
        fn = _Flaky(0)
        assert retry_on_lock(fn, environment="dev", policy=LockPolicy(), sleep=fake_clock.sleep, clock=fake_clock) == "ok"
        assert fake_clock.sleeps == []

    def test_exponential_backoff_capped(self, fake_clock: FakeClock) -> None:
        fn = _Flaky(4)
        policy = LockPolicy(timeout_sec=300, initial_backoff_sec=2, max_backoff_sec=5)

        result = retry_on_lock(fn, environment="dev", policy=policy, sleep=fake_clock.sleep, clock=fake_clock)

        assert result == "ok"
        assert fn.calls == 5
        assert fake_clock.sleeps == [2, 4, 5, 5]

    def test_times_out_after_bounded_wait(self, fake_clock: FakeClock) -> None:
        fn = _Flaky(1000)
        policy = LockPolicy(timeout_sec=10, initial_backoff_sec=2, max_backoff_sec=30)

        with pytest.raises(LockTimeout) as exc_info:
            retry_on_lock(fn, environment="dev", policy=policy, sleep=fake_clock.sleep, clock=fake_clock)

        assert exc_info.value.environment == "dev"
        assert exc_info.value.waited_sec == pytest.approx(10)
        # 2 + 4 + 4 (clipped to the remaining time)
        assert fake_clock.sleeps == [2, 4, 4]
        assert isinstance(exc_info.value.__cause__, LockUnavailable)

    def test_zero_timeout_fails_on_first_contention(self, fake_clock: FakeClock) -> None:
        fn = _Flaky(1)
        with pytest.raises(LockTimeout):
            retry_on_lock(
                fn,
                environment="dev",
                policy=LockPolicy(timeout_sec=0),
                sleep=fake_clock.sleep,
                clock=fake_clock,
            )
        assert fn.calls == 1
        assert fake_clock.sleeps == []

    def test_other_errors_are_not_retried(self, fake_clock: FakeClock) -> None:
        def boom() -> None:
            raise ValueError("nope")

        with pytest.raises(ValueError):
            retry_on_lock(boom, environment="dev", policy=LockPolicy(), sleep=fake_clock.sleep, clock=fake_clock)
        assert fake_clock.sleeps == []


class TestFileStateLock:
    def test_acquire_writes_owner_and_release_removes(self, tmp_path) -> None:
        lock = FileStateLock(tmp_path / "locks", owner="runner-a")

        lock.acquire("dev")
        data = json.loads(lock.path_for("dev").read_text(encoding="utf-8"))
        assert data == {"environment": "dev", "owner": "runner-a"}

        lock.release("dev")
        assert not lock.path_for("dev").exists()

    def test_second_holder_is_rejected(self, tmp_path) -> None:
        first = FileStateLock(tmp_path, owner="runner-a")
        second = FileStateLock(tmp_path, owner="runner-b")
        first.acquire("prod")

        with pytest.raises(LockUnavailable, match="held by runner-a"):
            second.acquire("prod")

    def test_locks_are_per_environment(self, tmp_path) -> None:
        first = FileStateLock(tmp_path, owner="runner-a")
        second = FileStateLock(tmp_path, owner="runner-b")
        first.acquire("dev")
        second.acquire("staging")
        assert first.path_for("dev").exists()
        assert second.path_for("staging").exists()

    def test_release_leaves_foreign_lock(self, tmp_path) -> None:
        first = FileStateLock(tmp_path, owner="runner-a")
        second = FileStateLock(tmp_path, owner="runner-b")
        first.acquire("dev")

        second.release("dev")

        assert first.path_for("dev").exists()

    def test_unusable_lock_directory_is_execution_error(self, tmp_path) -> None:
        blocker = tmp_path / "locks"
        blocker.write_text("", encoding="utf-8")

        with pytest.raises(ExecutionError, match="cannot create lock directory"):
            FileStateLock(blocker, owner="runner-a").acquire("dev")

    def test_execution_error_is_not_retried(self, tmp_path, fake_clock: FakeClock) -> None:
        blocker = tmp_path / "locks"
        blocker.write_text("", encoding="utf-8")
        lock = FileStateLock(blocker, owner="runner-a")

        with pytest.raises(ExecutionError):
            with hold_lock(lock, "dev", LockPolicy(), sleep=fake_clock.sleep, clock=fake_clock):
                pytest.fail("body must not run without the lock")

        assert fake_clock.sleeps == []


class TestHoldLock:
    def test_released_when_body_raises(self, tmp_path, fake_clock: FakeClock) -> None:
        lock = FileStateLock(tmp_path, owner="runner-a")

        with pytest.raises(RuntimeError):
            with hold_lock(lock, "dev", LockPolicy(), sleep=fake_clock.sleep, clock=fake_clock):
                assert lock.path_for("dev").exists()
                raise RuntimeError("apply crashed")

        assert not lock.path_for("dev").exists()

    def test_contended_lock_times_out(self, tmp_path, fake_clock: FakeClock) -> None:
        FileStateLock(tmp_path, owner="runner-a").acquire("dev")
        lock = FileStateLock(tmp_path, owner="runner-b")

        with pytest.raises(LockTimeout):
            with hold_lock(lock, "dev", LockPolicy(timeout_sec=5), sleep=fake_clock.sleep, clock=fake_clock):
                pytest.fail("body must not run without the lock")
