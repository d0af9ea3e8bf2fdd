"""Process- and thread-safe file locking.

Platform Support:
    Requires POSIX (Linux, macOS): locks are taken with ``fcntl.flock``,
    which the kernel releases automatically if the holding process dies.

FileLock guards a single shared resource (the replica, or the taskrc file)
for writers. Acquisition is always bounded: the lock is polled with the
retry policy's backoff schedule until the timeout expires, and expiry
raises LockTimeoutError instead of blocking forever.
"""

import fcntl
import json
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from taskledger.errors import LockTimeoutError, StorageIOError
from taskledger.logging import Loggers
from taskledger.retry import RetryPolicy

logger = Loggers.locking()


class FileLock:
    """Reentrant exclusive lock backed by ``fcntl.flock`` on a lock file.

    The same thread may re-acquire a lock it holds; other threads of the
    process and other processes wait (up to the timeout) for it.

    Usage:
        lock = FileLock(Path("/path/to/replica.lock"))
        with lock.hold(timeout=5.0):
            # Critical section protected across threads and processes
            ...
    """

    def __init__(self, path: Path, policy: RetryPolicy | None = None):
        self.path = Path(path)
        self._policy = policy or RetryPolicy()
        self._thread_lock = threading.RLock()
        self._owner: int | None = None
        self._depth = 0
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        """Whether the calling thread holds the lock."""
        return self._owner == threading.get_ident() and self._depth > 0

    def acquire(self, timeout: float) -> None:
        """Acquire the lock, waiting at most ``timeout`` seconds.

        Raises:
            LockTimeoutError: If the lock is still held elsewhere at the deadline
            StorageIOError: If the lock file cannot be opened
        """
        deadline = time.monotonic() + timeout
        if not self._thread_lock.acquire(timeout=max(timeout, 0)):
            logger.warning("lock_timeout", path=str(self.path), timeout=timeout, holder="thread")
            raise LockTimeoutError(self.path, timeout)

        if self._depth > 0:
            self._depth += 1
            return

        try:
            self._fd = self._acquire_file(deadline, timeout)
        except BaseException:
            self._thread_lock.release()
            raise
        self._owner = threading.get_ident()
        self._depth = 1

    def release(self) -> None:
        """Release one level of the lock held by the calling thread."""
        if not self.held:
            raise RuntimeError(f"Lock {self.path} is not held by this thread")
        self._depth -= 1
        if self._depth == 0:
            fd, self._fd, self._owner = self._fd, None, None
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        self._thread_lock.release()

    @contextmanager
    def hold(self, timeout: float) -> Iterator["FileLock"]:
        """Hold the lock for the duration of a ``with`` block."""
        self.acquire(timeout)
        try:
            yield self
        finally:
            self.release()

    def holder(self) -> dict[str, Any] | None:
        """Diagnostic info written by the current holder, if readable."""
        try:
            return json.loads(self.path.read_text() or "null")
        except (OSError, ValueError):
            return None

    def _acquire_file(self, deadline: float, timeout: float) -> int:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise StorageIOError.from_os_error(self.path, e) from e

        start = time.monotonic()
        delays = self._policy.delays()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    pass
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("lock_timeout", path=str(self.path), timeout=timeout, holder=self.holder())
                    raise LockTimeoutError(self.path, timeout)
                time.sleep(min(next(delays), remaining))
        except BaseException:
            os.close(fd)
            raise

        waited = time.monotonic() - start
        if waited > 0:
            logger.debug("lock_wait", path=str(self.path), waited=round(waited, 4))

        # Holder info is diagnostic only; a failed write does not fail the lock
        try:
            os.ftruncate(fd, 0)
            os.pwrite(fd, json.dumps({"pid": os.getpid(), "acquired_at": time.time()}).encode(), 0)
        except OSError as e:
            logger.debug("lock_holder_write_failed", path=str(self.path), error=str(e))
        return fd
