"""Integration tests for prepared database provisioning."""

from pathlib import Path

import pytest

from embedded_pg.provisioning.preparer import SqlScriptPreparer
from embedded_pg.provisioning.provider import PreparedDbProvider

pytestmark = pytest.mark.integration


def _provider(ctx, pg_install: Path, statement: str) -> PreparedDbProvider:
    return PreparedDbProvider(
        SqlScriptPreparer(statement),
        [lambda b: b.set_postgres_binary_directory(pg_install)],
        app_context=ctx,
    )


def test_fresh_databases_contain_schema(real_context, pg_install: Path) -> None:
    provider = _provider(real_context, pg_install, "CREATE TABLE foo (bar int)")

    first = provider.create_data_source(timeout=30)
    second = provider.create_data_source(timeout=30)

    assert first.database != second.database
    for data_source in (first, second):
        with data_source.connect() as conn:
            assert conn.execute("SELECT count(*) FROM foo").fetchone()[0] == 0

    with first.connect() as conn:
        conn.execute("INSERT INTO foo VALUES (1)")
        conn.commit()
    with second.connect() as conn:
        assert conn.execute("SELECT count(*) FROM foo").fetchone()[0] == 0


def test_equal_preparers_share_server(real_context, pg_install: Path) -> None:
    a = _provider(real_context, pg_install, "CREATE TABLE foo (bar int)")
    b = _provider(real_context, pg_install, "CREATE TABLE foo (bar int)")
    c = _provider(real_context, pg_install, "CREATE TABLE baz (qux int)")

    assert a.port == b.port
    assert a.port != c.port


def test_configuration_tweak(real_context, pg_install: Path) -> None:
    provider = _provider(real_context, pg_install, "CREATE TABLE foo (bar int)")
    tweak = provider.get_configuration_tweak("orders")
    assert tweak["ot.db.orders.uri"].startswith(f"jdbc:postgresql://localhost:{provider.port}/")
    assert tweak["ot.db.orders.ds.user"] == "postgres"
