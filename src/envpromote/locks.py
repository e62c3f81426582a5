"""Per-environment state locks with bounded retry."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    wait_exponential,
)

from envpromote.config.types import LockPolicy
from envpromote.errors import ExecutionError, LockTimeout, LockUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateLock(Protocol):
    """Mutual exclusion keyed by environment name across runs."""

    def acquire(self, environment: str) -> None: ...

    def release(self, environment: str) -> None: ...


class NullStateLock:
    """No-op lock; the engine's own backend locking provides exclusion."""

    def acquire(self, environment: str) -> None:
        return None

    def release(self, environment: str) -> None:
        return None


class FileStateLock:
    """Exclusive lock files ``<directory>/<environment>.lock``.

    Creation uses ``O_CREAT | O_EXCL`` so only one process can hold a lock.
    Only usable where every run shares the same filesystem.
    """

    def __init__(self, directory: Path, owner: str | None = None) -> None:
        self.directory = directory
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"

    def path_for(self, environment: str) -> Path:
        return self.directory / f"{environment}.lock"

    def acquire(self, environment: str) -> None:
        """Take the lock.

        Raises:
            LockUnavailable: If another owner holds the lock file
            ExecutionError: If the lock directory or file cannot be written
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExecutionError(f"cannot create lock directory {self.directory}: {exc}") from exc

        path = self.path_for(environment)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            raise LockUnavailable(environment, f"held by {self._holder(path)}") from exc
        except OSError as exc:
            raise ExecutionError(f"cannot create lock file {path}: {exc}") from exc
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump({"environment": environment, "owner": self.owner}, handle, sort_keys=True)

    def release(self, environment: str) -> None:
        path = self.path_for(environment)
        holder = self._holder(path)
        if holder not in (self.owner, "unknown"):
            logger.warning("not releasing lock on %s held by %s", environment, holder)
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise ExecutionError(f"cannot remove lock file {path}: {exc}") from exc

    def _holder(self, path: Path) -> str:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return "unknown"
        return str(data.get("owner", "unknown"))


def retry_on_lock(
    fn: Callable[[], T],
    *,
    environment: str,
    policy: LockPolicy,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``fn``, retrying on ``LockUnavailable`` with capped exponential backoff.

    The deadline is measured with ``clock`` and no wait runs past it.

    Raises:
        LockTimeout: If the lock is still unavailable once ``policy.timeout_sec`` elapsed
    """
    started = clock()
    deadline = started + policy.timeout_sec
    backoff = wait_exponential(multiplier=policy.initial_backoff_sec, max=policy.max_backoff_sec)

    def past_deadline(retry_state: RetryCallState) -> bool:
        return clock() >= deadline

    def wait_within_deadline(retry_state: RetryCallState) -> float:
        return max(0.0, min(backoff(retry_state), deadline - clock()))

    retrying = Retrying(
        retry=retry_if_exception_type(LockUnavailable),
        stop=past_deadline,
        wait=wait_within_deadline,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.INFO),
    )
    try:
        return retrying(fn)
    except RetryError as exc:
        raise LockTimeout(environment, clock() - started) from exc.last_attempt.exception()


@contextmanager
def hold_lock(
    lock: StateLock,
    environment: str,
    policy: LockPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[None]:
    """Acquire the environment lock with retry and always release it."""
    retry_on_lock(
        lambda: lock.acquire(environment),
        environment=environment,
        policy=policy,
        sleep=sleep,
        clock=clock,
    )
    try:
        yield
    finally:
        lock.release(environment)
