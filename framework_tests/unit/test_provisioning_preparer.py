"""Tests for database preparers."""

from pathlib import Path
from unittest.mock import MagicMock, call

import psycopg
import pytest

from embedded_pg.core.errors import PathError
from embedded_pg.provisioning.preparer import (
    ConnectionPreparer,
    SqlFilePreparer,
    SqlScriptPreparer,
    has_value_equality,
)


class IdentityPreparer(ConnectionPreparer):
    def prepare_connection(self, conn: psycopg.Connection) -> None:
        conn.execute("SELECT 1")


def _data_source() -> MagicMock:
    return MagicMock()


class TestSqlScriptPreparer:
    """Test statement preparers."""

    def test_executes_in_order_and_commits(self) -> None:
        ds = _data_source()
        SqlScriptPreparer("CREATE TABLE a (x int)", "INSERT INTO a VALUES (1)").prepare(ds)

        conn = ds.connect.return_value.__enter__.return_value
        assert conn.execute.call_args_list == [
            call("CREATE TABLE a (x int)"),
            call("INSERT INTO a VALUES (1)"),
        ]
        conn.commit.assert_called_once()

    def test_value_equality(self) -> None:
        assert SqlScriptPreparer("A", "B") == SqlScriptPreparer("A", "B")
        assert hash(SqlScriptPreparer("A")) == hash(SqlScriptPreparer("A"))
        assert SqlScriptPreparer("A", "B") != SqlScriptPreparer("B", "A")

    def test_error_propagates_without_commit(self) -> None:
        ds = _data_source()
        conn = ds.connect.return_value.__enter__.return_value
        conn.execute.side_effect = psycopg.errors.SyntaxError("syntax error")

        with pytest.raises(psycopg.Error):
            SqlScriptPreparer("CREATE TABL").prepare(ds)
        conn.commit.assert_not_called()


class TestSqlFilePreparer:
    """Test file-based preparers."""

    def test_executes_files(self, temp_dir: Path) -> None:
        first = temp_dir / "001.sql"
        second = temp_dir / "002.sql"
        first.write_text("CREATE TABLE a (x int);")
        second.write_text("CREATE TABLE b (y int);")

        ds = _data_source()
        SqlFilePreparer(first, str(second)).prepare(ds)

        conn = ds.connect.return_value.__enter__.return_value
        assert [c.args[0] for c in conn.execute.call_args_list] == [
            "CREATE TABLE a (x int);",
            "CREATE TABLE b (y int);",
        ]

    def test_paths_resolved_for_equality(self, temp_dir: Path, monkeypatch) -> None:
        monkeypatch.chdir(temp_dir)
        assert SqlFilePreparer("schema.sql") == SqlFilePreparer(temp_dir / "schema.sql")

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(PathError):
            SqlFilePreparer(temp_dir / "absent.sql").prepare(_data_source())


class TestValueEquality:
    """Test detection of preparers usable as cluster keys."""

    def test_dataclass_preparers(self) -> None:
        assert has_value_equality(SqlScriptPreparer("A"))
        assert has_value_equality(SqlFilePreparer("a.sql"))

    def test_identity_preparer(self) -> None:
        assert not has_value_equality(IdentityPreparer())
        assert IdentityPreparer() != IdentityPreparer()
