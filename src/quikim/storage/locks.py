"""Cross-process file locks and per-key in-process locks."""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Generator
from pathlib import Path

from filelock import FileLock, Timeout


class LockTimeout(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""


@contextlib.contextmanager
def quikim_lock(
    locks_dir: Path,
    key: str,
    timeout: float = 10,
) -> Generator[None, None, None]:
    """Acquire a single file lock at ``locks_dir/<key>.lock``.

    Args:
        locks_dir: Directory where lock files are stored.
        key: Lock key (used as the lock file basename).
        timeout: Seconds to wait before giving up.

    Raises:
        LockTimeout: If the lock cannot be acquired within *timeout* seconds.
    """
    locks_dir.mkdir(parents=True, exist_ok=True)
    lock = FileLock(locks_dir / f"{key}.lock", timeout=timeout)
    try:
        lock.acquire()
    except Timeout:
        raise LockTimeout(f"Could not acquire lock '{key}' within {timeout}s") from None
    try:
        yield
    finally:
        lock.release()


class KeyedLocks:
    """One re-entrant thread lock per key, created on first use.

    Unrelated keys never contend; the registry itself is guarded by a single
    lock held only while looking up or creating an entry.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextlib.contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        with self.get(key):
            yield


@contextlib.contextmanager
def keyed_lock(
    keyed: KeyedLocks,
    locks_dir: Path,
    key: str,
    timeout: float = 10,
) -> Generator[None, None, None]:
    """Hold the in-process lock for *key*, then the file lock for *key*."""
    with keyed.hold(key), quikim_lock(locks_dir, key, timeout=timeout):
        yield
