"""Advisory file locks shared between processes and threads.

Locks use ``flock`` on a dedicated lock file. A process-wide registry of held
lock paths turns a second attempt from the same process into an
OverlappingLockError instead of silently succeeding or deadlocking.
"""

import fcntl
import os
import threading
from pathlib import Path
from typing import Optional, Set

from ..core.errors import LockError, OverlappingLockError
from ..core.log import get_logger

logger = get_logger(__name__)

_held_paths: Set[str] = set()
_registry_lock = threading.Lock()


def held_lock_paths() -> Set[str]:
    """Snapshot of lock files currently held by this process."""
    with _registry_lock:
        return set(_held_paths)


class FileLock:
    """Exclusive, non-blocking advisory lock on a single file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._key = str(self.path.resolve())
        self._fd: Optional[int] = None

    @property
    def is_held(self) -> bool:
        return self._fd is not None

    def try_acquire(self) -> bool:
        """Try once to take the lock.

        Returns:
            True if the lock is now held, False if another process holds it

        Raises:
            OverlappingLockError: this process already holds the lock
            LockError: lock file could not be opened
        """
        with _registry_lock:
            if self._key in _held_paths:
                raise OverlappingLockError(
                    f"Lock {self.path} is already held by this process",
                    details={"path": str(self.path)},
                )
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise LockError(f"Cannot open lock file {self.path}: {e}") from e

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                return False
            except OSError as e:
                os.close(fd)
                raise LockError(f"Cannot lock {self.path}: {e}") from e

            self._fd = fd
            _held_paths.add(self._key)

        self._stamp_owner()
        logger.debug("Acquired lock %s", self.path)
        return True

    def release(self) -> None:
        """Release the lock; releasing an unheld lock is a no-op."""
        with _registry_lock:
            if self._fd is None:
                return
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                os.close(self._fd)
                self._fd = None
                _held_paths.discard(self._key)
        logger.debug("Released lock %s", self.path)

    def _stamp_owner(self) -> None:
        # Record the owning pid; also refreshes the file's mtime.
        try:
            os.ftruncate(self._fd, 0)
            os.pwrite(self._fd, f"{os.getpid()}\n".encode("ascii"), 0)
        except OSError as e:
            logger.debug("Could not write owner to %s: %s", self.path, e)

    def __enter__(self) -> "FileLock":
        if not self.try_acquire():
            raise LockError(f"Lock {self.path} is held by another process")
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"FileLock({str(self.path)!r}, held={self.is_held})"
