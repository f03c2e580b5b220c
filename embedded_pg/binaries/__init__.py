"""Binary bundle resolution and extraction.

API:
    - BundledBinaryResolver, ArchiveFileResolver: find a bundle archive
    - ArchiveExtractor, BinaryCache: unpack it once per machine and process
    - UncompressBundleDirectoryResolver, LocalDirectoryResolver: installation directories
"""

from .resolver import ArchiveFileResolver, BinaryResolver, BundledBinaryResolver
from .extractor import ArchiveExtractor, BinaryCache
from .directory import (
    DirectoryResolver,
    LocalDirectoryResolver,
    UncompressBundleDirectoryResolver,
)

__all__ = [
    "ArchiveFileResolver",
    "BinaryResolver",
    "BundledBinaryResolver",
    "ArchiveExtractor",
    "BinaryCache",
    "DirectoryResolver",
    "LocalDirectoryResolver",
    "UncompressBundleDirectoryResolver",
]
