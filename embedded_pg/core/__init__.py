"""Core components: configuration, errors, logging and process management."""

from .value_objects import InstanceId, ArchiveDigest

__all__ = ["InstanceId", "ArchiveDigest"]
