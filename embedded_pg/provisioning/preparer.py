"""Database preparers: run once against a cluster's template database.

Preparers are used as cluster cache keys, so two preparers that compare equal
must produce identical database content. The dataclass-based preparers here
compare by value; a custom preparer that keeps ``object`` equality gets its own
cluster per instance.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import psycopg

from ..utils.filesystem import read_text
from .datasource import PgDataSource


class DatabasePreparer(ABC):
    """Loads schema or data into a template database."""

    @abstractmethod
    def prepare(self, data_source: PgDataSource) -> None:
        """Apply changes; may raise ``psycopg.Error``."""


class ConnectionPreparer(DatabasePreparer):
    """Preparer that works on one connection, committed when done."""

    def prepare(self, data_source: PgDataSource) -> None:
        with data_source.connect() as conn:
            self.prepare_connection(conn)
            conn.commit()

    @abstractmethod
    def prepare_connection(self, conn: psycopg.Connection) -> None:
        """Apply changes through ``conn``."""


@dataclass(frozen=True, init=False)
class SqlScriptPreparer(ConnectionPreparer):
    """Executes SQL statements in order.

    Example:
        SqlScriptPreparer("CREATE TABLE foo (bar int)")
    """

    statements: Tuple[str, ...]

    def __init__(self, *statements: str) -> None:
        object.__setattr__(self, "statements", tuple(statements))

    def prepare_connection(self, conn: psycopg.Connection) -> None:
        for statement in self.statements:
            conn.execute(statement)


@dataclass(frozen=True, init=False)
class SqlFilePreparer(ConnectionPreparer):
    """Executes SQL files in order; files are read at prepare time."""

    paths: Tuple[Path, ...]

    def __init__(self, *paths: Union[str, Path]) -> None:
        object.__setattr__(self, "paths", tuple(Path(p).resolve() for p in paths))

    def prepare_connection(self, conn: psycopg.Connection) -> None:
        for path in self.paths:
            conn.execute(read_text(path))


def has_value_equality(preparer: object) -> bool:
    """True if the preparer's class defines its own ``__eq__``."""
    return type(preparer).__eq__ is not object.__eq__
