"""Locate the compressed PostgreSQL bundle for a platform.

Bundles are plain ``.txz`` files named
``postgres-<os>-<arch>[-<distribution>].txz``. They are looked up in the
configured search directories, then in directories contributed by installed
distributions through the ``embedded_pg.binaries`` entry point group.
"""

from dataclasses import dataclass
from importlib import metadata, resources
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol, Tuple

from ..core.errors import BinaryNotFoundError, DuplicateBinaryError
from ..core.log import get_logger
from ..core.platform import (
    detect_distribution,
    normalize_architecture,
    normalize_operating_system,
)

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "embedded_pg.binaries"
BUNDLE_SUFFIX = ".txz"


class BinaryResolver(Protocol):
    """Protocol for bundle resolvers.

    Implementations must be hashable with value equality: extracted
    directories are cached per resolver.
    """

    def resolve(self, operating_system: str, architecture: str) -> BinaryIO:
        """Open the bundle for a platform; the caller closes the stream."""


def artifact_name(
    operating_system: str, architecture: str, distribution: Optional[str] = None
) -> str:
    """File name of the bundle for a platform."""
    parts = [operating_system, architecture]
    if distribution:
        parts.append(distribution)
    name = "postgres-" + "-".join(parts) + BUNDLE_SUFFIX
    return name.lower().replace(" ", "_")


def entry_point_directories() -> List[Path]:
    """Directories advertised by installed bundle distributions.

    An entry point may name a package (its directory is searched) or an
    object that is a path.
    """
    directories: List[Path] = []
    for entry_point in metadata.entry_points(group=ENTRY_POINT_GROUP):
        try:
            target = entry_point.load()
        except (ImportError, AttributeError) as e:
            logger.warning("Could not load bundle entry point %s: %s", entry_point.name, e)
            continue
        if isinstance(target, (str, Path)):
            directories.append(Path(target))
        elif hasattr(target, "__path__"):
            directories.append(Path(str(resources.files(target))))
        else:
            logger.warning(
                "Bundle entry point %s is neither a package nor a path", entry_point.name
            )
    return directories


@dataclass(frozen=True)
class BundledBinaryResolver:
    """Finds bundles by platform name across a search path.

    Attributes:
        search_path: Directories searched before entry point directories
        use_entry_points: Also search ``embedded_pg.binaries`` entry points
        distribution: Linux distribution used for the first lookup tier;
            None means detect it from os-release
        detect: Whether to detect the distribution when none is given
    """

    search_path: Tuple[Path, ...] = ()
    use_entry_points: bool = True
    distribution: Optional[str] = None
    detect: bool = True

    def __post_init__(self) -> None:
        # Accept any iterable of path-likes while staying hashable
        object.__setattr__(
            self, "search_path", tuple(Path(p) for p in self.search_path)
        )

    def resolve(self, operating_system: str, architecture: str) -> BinaryIO:
        """Open the best matching bundle.

        The distribution-specific name wins over the generic one. A name that
        exists in more than one search directory is ambiguous.

        Raises:
            BinaryNotFoundError: no bundle in any tier
            DuplicateBinaryError: more than one bundle in the winning tier
            UnsupportedArchitectureError: architecture not recognized
        """
        os_name = normalize_operating_system(operating_system)
        arch_name = normalize_architecture(architecture)

        names = []
        distribution = self._distribution(os_name)
        if distribution:
            names.append(artifact_name(os_name, arch_name, distribution))
        names.append(artifact_name(os_name, arch_name))

        directories = self.search_directories()
        for name in names:
            matches = self._find(name, directories)
            if len(matches) > 1:
                raise DuplicateBinaryError(
                    f"Duplicate postgres binaries for {name}: "
                    + ", ".join(str(m) for m in matches),
                    candidates=matches,
                )
            if matches:
                logger.info("Using postgres bundle %s", matches[0])
                return open(matches[0], "rb")

        raise BinaryNotFoundError(
            f"Missing postgres binaries: none of {', '.join(names)} found",
            details={
                "names": names,
                "search_path": [str(d) for d in directories],
            },
        )

    def search_directories(self) -> List[Path]:
        directories = [Path(p) for p in self.search_path]
        if self.use_entry_points:
            directories.extend(entry_point_directories())
        return directories

    def _distribution(self, os_name: str) -> Optional[str]:
        if self.distribution is not None:
            return self.distribution or None
        if self.detect and os_name == "linux":
            return detect_distribution()
        return None

    @staticmethod
    def _find(name: str, directories: List[Path]) -> List[Path]:
        matches: List[Path] = []
        for directory in directories:
            candidate = directory / name
            if candidate.is_file() and candidate.resolve() not in matches:
                matches.append(candidate.resolve())
        return matches


@dataclass(frozen=True)
class ArchiveFileResolver:
    """Always returns one specific bundle, whatever the platform."""

    path: Path

    def resolve(self, operating_system: str, architecture: str) -> BinaryIO:
        if not Path(self.path).is_file():
            raise BinaryNotFoundError(f"Missing postgres binaries: {self.path}")
        return open(self.path, "rb")
