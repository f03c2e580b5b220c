"""Prepared database provisioning."""

from .datasource import ConnectionInfo, PgDataSource
from .preparer import (
    ConnectionPreparer,
    DatabasePreparer,
    SqlFilePreparer,
    SqlScriptPreparer,
)
from .pipeline import DbInfo, PrepPipeline
from .provider import ClusterRegistry, PreparedDbProvider

__all__ = [
    "ConnectionInfo",
    "PgDataSource",
    "ConnectionPreparer",
    "DatabasePreparer",
    "SqlFilePreparer",
    "SqlScriptPreparer",
    "DbInfo",
    "PrepPipeline",
    "ClusterRegistry",
    "PreparedDbProvider",
]
