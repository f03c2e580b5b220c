"""Unpack PostgreSQL bundles into content-addressed directories, once per machine.

The directory for a bundle is ``<working dir>/PG-<md5 of archive>``. It counts
as complete only once its ``.exists`` marker is present; the marker is the
last thing written. Concurrent extractors coordinate through an advisory lock
on ``.unpack-lock`` inside the target directory.
"""

import hashlib
import os
import shutil
import tarfile
import tempfile
import threading
import time
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Dict, Hashable, Optional

from ..core.errors import (
    ExtractionError,
    ExtractionTimeoutError,
    OverlappingLockError,
)
from ..core.log import get_logger, log_event
from ..core.time import poll_until
from ..core.types import TimeoutConfig
from ..core.value_objects import ArchiveDigest
from ..utils.filelock import FileLock
from ..utils.filesystem import ensure_dir, is_within, make_executable

logger = get_logger(__name__)

MARKER_NAME = ".exists"
UNPACK_LOCK_NAME = ".unpack-lock"
_CHUNK_SIZE = 1024 * 1024


def spool_and_digest(stream: BinaryIO, spool: BinaryIO) -> ArchiveDigest:
    """Copy stream into spool while hashing it."""
    digest = hashlib.md5(usedforsecurity=False)
    while True:
        chunk = stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
        spool.write(chunk)
    spool.flush()
    return ArchiveDigest(digest.hexdigest())


def _relative_entry(name: str) -> PurePosixPath:
    path = PurePosixPath(name)
    parts = [p for p in path.parts if p not in ("", ".")]
    if path.is_absolute() or ".." in parts:
        raise ExtractionError(f"Refusing archive entry outside target: {name}")
    return PurePosixPath(*parts) if parts else PurePosixPath(".")


def _replace_existing(dest: Path) -> None:
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.is_dir():
        shutil.rmtree(dest)


def unpack_archive(fileobj: BinaryIO, target: Path) -> int:
    """Unpack an xz-compressed tar into target, overwriting existing entries.

    Hard links become relative symbolic links. Every file below ``bin/`` is
    made executable.

    Returns:
        Number of entries written
    """
    count = 0
    try:
        with tarfile.open(fileobj=fileobj, mode="r:xz") as archive:
            for member in archive:
                relative = _relative_entry(member.name)
                if str(relative) == ".":
                    continue
                dest = target / Path(*relative.parts)
                if not is_within(target, dest):
                    raise ExtractionError(
                        f"Refusing archive entry outside target: {member.name}"
                    )

                if member.isdir():
                    if dest.is_symlink() or dest.is_file():
                        dest.unlink()
                    dest.mkdir(parents=True, exist_ok=True)
                elif member.issym() or member.islnk():
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    if member.issym():
                        link_target = member.linkname
                        resolved = dest.parent / link_target
                    else:
                        resolved = target / Path(*_relative_entry(member.linkname).parts)
                        link_target = os.path.relpath(resolved, dest.parent)
                    if os.path.isabs(link_target) or not is_within(
                        target, Path(os.path.normpath(resolved))
                    ):
                        raise ExtractionError(
                            f"Refusing link {member.name} -> {member.linkname} outside target"
                        )
                    _replace_existing(dest)
                    os.symlink(link_target, dest)
                elif member.isfile():
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    _replace_existing(dest)
                    source = archive.extractfile(member)
                    if source is None:
                        raise ExtractionError(f"Cannot read archive entry {member.name}")
                    with source, open(dest, "wb") as out:
                        shutil.copyfileobj(source, out, _CHUNK_SIZE)
                    dest.chmod((member.mode & 0o777) or 0o644)
                    if relative.parts[0] == "bin":
                        make_executable(dest)
                else:
                    logger.debug("Skipping special archive entry %s", member.name)
                    continue
                count += 1
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ExtractionError(f"Failed to unpack postgres bundle into {target}: {e}") from e
    return count


class ArchiveExtractor:
    """Extracts bundles into the working directory exactly once."""

    def __init__(
        self,
        working_dir: Path,
        timeouts: Optional[TimeoutConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.working_dir = Path(working_dir)
        self._timeouts = timeouts or TimeoutConfig()
        self._sleep = sleep

    def target_for(self, digest: ArchiveDigest) -> Path:
        return self.working_dir / digest.directory_name

    def extract(self, stream: BinaryIO) -> Path:
        """Return the extracted directory for the bundle in stream.

        Raises:
            ExtractionError: archive is corrupt or cannot be written
            ExtractionTimeoutError: another extractor never finished
        """
        ensure_dir(self.working_dir)
        with tempfile.TemporaryFile(dir=self.working_dir, prefix=".bundle-") as spool:
            digest = spool_and_digest(stream, spool)
            target = self.target_for(digest)
            marker = target / MARKER_NAME

            if marker.exists():
                logger.debug("Bundle %s already extracted at %s", digest, target)
                return target

            ensure_dir(target)
            lock = FileLock(target / UNPACK_LOCK_NAME)
            try:
                acquired = lock.try_acquire()
            except OverlappingLockError:
                # Another thread of this process is extracting the same bundle
                acquired = False

            if not acquired:
                self._wait_for_marker(marker)
                return target

            try:
                if not marker.exists():
                    spool.seek(0)
                    started = time.monotonic()
                    count = unpack_archive(spool, target)
                    marker.touch()
                    log_event(
                        logger,
                        "extraction",
                        "Extracted postgres bundle %s (%s entries) in %.1fs"
                        % (digest, count, time.monotonic() - started),
                        digest=str(digest),
                        target=str(target),
                    )
            finally:
                lock.release()
        return target

    def _wait_for_marker(self, marker: Path) -> None:
        attempts = self._timeouts.extraction_wait_attempts
        interval = self._timeouts.extraction_poll_interval
        logger.info("Waiting for another process to unpack %s", marker.parent)
        outcome = poll_until(
            marker.exists, max_attempts=attempts, interval=interval, sleep=self._sleep
        )
        if not outcome.satisfied:
            waited = attempts * interval
            raise ExtractionTimeoutError(
                f"Waited {waited:.0f} seconds for postgres binaries to be unpacked "
                f"to {marker.parent}, but they did not appear",
                timeout=waited,
            )


class BinaryCache:
    """Process-wide memo of extracted directories keyed by resolver."""

    def __init__(self) -> None:
        self._directories: Dict[Hashable, Path] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: Hashable, factory: Callable[[], Path]) -> Path:
        with self._lock:
            cached = self._directories.get(key)
            if cached is not None and (cached / MARKER_NAME).exists():
                return cached
            directory = factory()
            self._directories[key] = directory
            return directory

    def clear(self) -> None:
        with self._lock:
            self._directories.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._directories)
