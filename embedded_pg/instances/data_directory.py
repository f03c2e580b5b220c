"""Per-instance data directories, their locks, and reclamation of orphans."""

import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from ..core.errors import (
    AlreadyRunningError,
    EmbeddedPgError,
    LockError,
    OverlappingLockError,
)
from ..core.log import get_logger
from ..core.types import TimeoutConfig
from ..utils.filelock import FileLock
from ..utils.filesystem import ensure_dir, file_age, safe_remove

logger = get_logger(__name__)

LOCK_FILE_NAME = "epg-lock"
POSTMASTER_PID = "postmaster.pid"
POSTGRESQL_CONF = "postgresql.conf"


class DataDirectory:
    """A data directory owned by at most one running server."""

    def __init__(self, path: Path, clean: bool = True) -> None:
        self.path = Path(path)
        self.clean = clean
        self._lock = FileLock(self.path / LOCK_FILE_NAME)

    @property
    def lock_file(self) -> Path:
        return self._lock.path

    @property
    def is_locked(self) -> bool:
        return self._lock.is_held

    def needs_initialization(self) -> bool:
        return self.clean or not (self.path / POSTGRESQL_CONF).exists()

    def ensure_not_in_use(self) -> None:
        """Fail fast if a live server already owns this directory."""
        if not self.lock_file.exists():
            return
        probe = FileLock(self.lock_file)
        try:
            acquired = probe.try_acquire()
        except OverlappingLockError as e:
            raise AlreadyRunningError(
                f"Data directory {self.path} is in use by this process"
            ) from e
        if not acquired:
            raise AlreadyRunningError(
                f"Data directory {self.path} is in use by another process"
            )
        probe.release()

    def empty(self) -> None:
        """Remove everything inside the directory, keeping the directory itself."""
        for child in self.path.iterdir():
            safe_remove(child)

    def lock(self) -> None:
        """Take the directory lock for the lifetime of the server.

        Raises:
            AlreadyRunningError: another server holds the lock
        """
        try:
            acquired = self._lock.try_acquire()
        except (OverlappingLockError, LockError) as e:
            raise AlreadyRunningError(f"Could not lock {self.lock_file}: {e}") from e
        if not acquired:
            raise AlreadyRunningError(f"Could not lock {self.lock_file}")

    def unlock(self) -> None:
        self._lock.release()

    def remove(self) -> bool:
        return safe_remove(self.path)

    def __repr__(self) -> str:
        return f"DataDirectory({str(self.path)!r}, clean={self.clean})"


class DataDirectoryManager:
    """Allocates data directories under a parent and reclaims abandoned ones.

    A sibling directory is abandoned when its lock file is older than the
    reclaim threshold and nobody holds the lock. A postmaster that is still
    running there is stopped through ``stopper`` before the tree is deleted.
    """

    def __init__(
        self,
        parent: Path,
        timeouts: Optional[TimeoutConfig] = None,
        stopper: Optional[Callable[[Path], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.parent = Path(parent)
        self._timeouts = timeouts or TimeoutConfig()
        self._stopper = stopper
        self._clock = clock

    def prepare(self, data_directory: Optional[Path] = None, clean: bool = True) -> DataDirectory:
        """Reclaim orphans, then return the requested or a freshly named directory."""
        ensure_dir(self.parent)
        if data_directory is not None:
            path = Path(data_directory)
        else:
            path = self.parent / str(uuid.uuid4())
        self.reclaim_stale(keep=path)
        ensure_dir(path)
        logger.debug("Data directory is %s", path)
        return DataDirectory(path, clean=clean)

    def reclaim_stale(self, keep: Optional[Path] = None) -> List[Path]:
        """Delete abandoned sibling directories other than keep; never raises."""
        reclaimed: List[Path] = []
        try:
            children = [p for p in self.parent.iterdir() if p.is_dir()]
            if keep is not None:
                kept = Path(keep).resolve()
                children = [p for p in children if p.resolve() != kept]
        except OSError as e:
            logger.warning("Could not scan %s for stale data directories: %s", self.parent, e)
            return reclaimed

        for child in children:
            try:
                if self._reclaim(child):
                    reclaimed.append(child)
            except (EmbeddedPgError, OSError) as e:
                logger.warning("Failed to reclaim stale data directory %s: %s", child, e)
        return reclaimed

    def _reclaim(self, directory: Path) -> bool:
        lock_file = directory / LOCK_FILE_NAME
        if not lock_file.exists():
            return False
        if file_age(lock_file, self._clock()) < self._timeouts.reclaim_min_age:
            return False

        lock = FileLock(lock_file)
        try:
            if not lock.try_acquire():
                return False
        except OverlappingLockError:
            logger.debug("Data directory %s is owned by this process", directory)
            return False

        try:
            if (directory / POSTMASTER_PID).exists() and self._stopper is not None:
                logger.info("Stopping orphaned postmaster in %s", directory)
                try:
                    self._stopper(directory)
                except (EmbeddedPgError, OSError) as e:
                    logger.warning("Could not stop orphaned postmaster in %s: %s", directory, e)
            logger.info("Removing stale data directory %s", directory)
            return safe_remove(directory)
        finally:
            lock.release()
