"""Tests for command line construction."""

import tempfile
from pathlib import Path
from unittest.mock import Mock

from embedded_pg.instances.command_builder import PostgresCommandBuilder


class TestPostgresCommandBuilder:
    """Test initdb, postgres and pg_ctl command lines."""

    def setup_method(self) -> None:
        self.builder = PostgresCommandBuilder(Path("/opt/pg"), Mock())

    def test_initdb(self) -> None:
        command = self.builder.initdb(Path("/data"), {})
        assert command == [
            "/opt/pg/bin/initdb", "-A", "trust", "-U", "postgres",
            "-D", "/data", "-E", "UTF-8",
        ]

    def test_initdb_locale_options(self) -> None:
        command = self.builder.initdb(
            Path("/data"), {"locale": "C", "no-locale": ""}
        )
        assert command[-3:] == ["--locale", "C", "--no-locale"]

    def test_initdb_superuser(self) -> None:
        builder = PostgresCommandBuilder(Path("/opt/pg"), Mock(), superuser="admin")
        command = builder.initdb(Path("/data"), {})
        assert command[command.index("-U") + 1] == "admin"

    def test_postgres(self) -> None:
        command = self.builder.postgres(Path("/data"), 5433, {"timezone": "UTC"})
        assert command == [
            "/opt/pg/bin/postgres", "-D", "/data", "-p", "5433", "-F",
            "-k", tempfile.gettempdir(), "-c", "timezone=UTC",
        ]

    def test_postgres_socket_directory_override(self) -> None:
        command = self.builder.postgres(
            Path("/data"), 5433, {"unix_socket_directories": "/run/pg"}
        )
        assert "-k" not in command
        assert command[-2:] == ["-c", "unix_socket_directories=/run/pg"]

    def test_pg_ctl_stop(self) -> None:
        assert self.builder.pg_ctl_stop(Path("/data"), "immediate", 3) == [
            "/opt/pg/bin/pg_ctl", "-D", "/data", "stop", "-m", "immediate",
            "-t", "3", "-w",
        ]
