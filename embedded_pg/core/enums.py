"""Core enumerations for embedded_pg.

Separated from types.py to break circular dependencies. This module contains
only enum definitions with no dependencies on other core modules.
"""

from enum import Enum


class ServerState(Enum):
    """Lifecycle state of an embedded PostgreSQL server."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class OutputMode(Enum):
    """Where child process output goes."""

    LOG = "log"
    INHERIT = "inherit"
    DISCARD = "discard"

