"""Strategies that produce a PostgreSQL installation directory (one with ``bin/``)."""

import glob
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, List

from ..core.errors import BinaryNotFoundError
from ..core.log import get_logger
from ..core.platform import detect_architecture, detect_operating_system
from ..core.types import TimeoutConfig
from .extractor import ArchiveExtractor, BinaryCache
from .resolver import BinaryResolver, BundledBinaryResolver

logger = get_logger(__name__)

REQUIRED_BINARIES = ("initdb", "pg_ctl", "postgres")


class DirectoryResolver(Protocol):
    """Protocol for installation directory strategies."""

    def get_directory(
        self, working_dir: Path, cache: BinaryCache, timeouts: TimeoutConfig
    ) -> Path:
        """Return a directory whose ``bin/`` holds initdb, pg_ctl and postgres."""


def missing_binaries(directory: Path) -> List[str]:
    bin_dir = Path(directory) / "bin"
    return [name for name in REQUIRED_BINARIES if not (bin_dir / name).exists()]


@dataclass(frozen=True)
class UncompressBundleDirectoryResolver:
    """Resolve a bundle for this platform and extract it into the working directory."""

    resolver: BinaryResolver = field(default_factory=BundledBinaryResolver)

    def get_directory(
        self, working_dir: Path, cache: BinaryCache, timeouts: TimeoutConfig
    ) -> Path:
        def extract() -> Path:
            extractor = ArchiveExtractor(working_dir, timeouts)
            with self.resolver.resolve(
                detect_operating_system(), detect_architecture()
            ) as stream:
                return extractor.extract(stream)

        return cache.get_or_create((self.resolver, Path(working_dir)), extract)


@dataclass(frozen=True)
class LocalDirectoryResolver:
    """Use an already installed PostgreSQL tree, e.g. ``/usr/lib/postgresql/16``."""

    path: Path

    def get_directory(
        self,
        working_dir: Optional[Path] = None,
        cache: Optional[BinaryCache] = None,
        timeouts: Optional[TimeoutConfig] = None,
    ) -> Path:
        directory = Path(self.path)
        missing = missing_binaries(directory)
        if missing:
            raise BinaryNotFoundError(
                f"PostgreSQL installation at {directory} lacks {', '.join(missing)}",
                details={"path": str(directory), "missing": missing},
            )
        return directory

    @classmethod
    def discover(cls) -> Optional["LocalDirectoryResolver"]:
        """Find an installed server: pg_ctl on PATH, then Debian-style versioned trees."""
        candidates: List[Path] = []
        pg_ctl = shutil.which("pg_ctl")
        if pg_ctl:
            candidates.append(Path(pg_ctl).resolve().parent.parent)

        def version_key(path: str) -> int:
            match = re.search(r"(\d+)", Path(path).name)
            return int(match.group(1)) if match else 0

        for pattern in ("/usr/lib/postgresql/*", "/usr/local/pgsql", "/opt/homebrew/opt/postgresql*"):
            for path in sorted(glob.glob(pattern), key=version_key, reverse=True):
                candidates.append(Path(path))

        for candidate in candidates:
            if not missing_binaries(candidate):
                logger.debug("Discovered PostgreSQL installation at %s", candidate)
                return cls(candidate)
        return None
