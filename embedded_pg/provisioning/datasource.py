"""Connection descriptors handed to callers."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import psycopg
from psycopg.conninfo import make_conninfo

from ..utils.urls import jdbc_url, libpq_uri


def _freeze(options: Optional[Mapping[str, str]]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in (options or {}).items()))


@dataclass(frozen=True)
class PgDataSource:
    """Everything needed to open connections to one database.

    Attributes:
        host: Server host name
        port: Server port
        database: Database name
        user: Role to connect as
        password: Password, if the server asks for one
        options: Extra libpq connection parameters, as sorted pairs
    """

    host: str
    port: int
    database: str
    user: str
    password: Optional[str] = None
    options: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(
        cls,
        port: int,
        database: str,
        user: str,
        password: Optional[str] = None,
        host: str = "localhost",
        options: Optional[Mapping[str, str]] = None,
    ) -> "PgDataSource":
        return cls(host, port, database, user, password, _freeze(options))

    @property
    def conninfo(self) -> str:
        """libpq keyword/value connection string."""
        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            **dict(self.options),
        )

    @property
    def url(self) -> str:
        return jdbc_url(self.port, self.database, self.user, host=self.host)

    @property
    def uri(self) -> str:
        return libpq_uri(
            self.port,
            self.database,
            self.user,
            password=self.password,
            host=self.host,
            options=dict(self.options),
        )

    def connect(self, **kwargs: Any) -> psycopg.Connection:
        """Open a new psycopg connection; keyword arguments go to ``psycopg.connect``."""
        return psycopg.connect(self.conninfo, **kwargs)


@dataclass(frozen=True)
class ConnectionInfo:
    """A database handed out by a provider."""

    database_name: str
    port: int
    user: str
    password: Optional[str] = None
    host: str = "localhost"
    properties: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def url(self) -> str:
        return jdbc_url(self.port, self.database_name, self.user, host=self.host)

    def to_data_source(self) -> PgDataSource:
        return PgDataSource.create(
            self.port,
            self.database_name,
            self.user,
            password=self.password,
            host=self.host,
            options=self.properties,
        )
