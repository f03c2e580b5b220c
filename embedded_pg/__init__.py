"""
embedded-pg: disposable PostgreSQL servers for test suites

Resolves a PostgreSQL binary bundle for the running platform, extracts it once
per machine, and runs throwaway servers on free ports with their own data
directories. On top of that, a provisioning pipeline prepares a template
database once and hands out fresh, uniquely named copies of it.
"""

__version__ = "0.1.0"

# Core exports
from .core.enums import OutputMode, ServerState
from .core.types import EmbeddedPgConfig, ServerSettings, TimeoutConfig
from .core.context import ApplicationContext
from .instances import EmbeddedPostgres, EmbeddedPostgresBuilder
from .provisioning import (
    ConnectionInfo,
    ConnectionPreparer,
    DatabasePreparer,
    PgDataSource,
    PreparedDbProvider,
    SqlFilePreparer,
    SqlScriptPreparer,
)

__all__ = [
    "__version__",
    "OutputMode",
    "ServerState",
    "EmbeddedPgConfig",
    "ServerSettings",
    "TimeoutConfig",
    "ApplicationContext",
    "EmbeddedPostgres",
    "EmbeddedPostgresBuilder",
    "ConnectionInfo",
    "ConnectionPreparer",
    "DatabasePreparer",
    "PgDataSource",
    "PreparedDbProvider",
    "SqlFilePreparer",
    "SqlScriptPreparer",
]
