"""Fixtures for tests that run a real PostgreSQL installation.

Tests are skipped when no installed server can be discovered, or when running
as root (initdb refuses to run as root).
"""

import os
from pathlib import Path
from typing import Generator

import pytest

from embedded_pg.binaries.directory import LocalDirectoryResolver
from embedded_pg.core.context import ApplicationContext
from embedded_pg.core.types import EmbeddedPgConfig, TimeoutConfig


@pytest.fixture(scope="session")
def pg_install() -> Path:
    """Directory of an installed PostgreSQL server."""
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        pytest.skip("initdb cannot run as root")
    resolver = LocalDirectoryResolver.discover()
    if resolver is None:
        pytest.skip("No PostgreSQL installation found")
    return resolver.get_directory()


@pytest.fixture
def real_context(temp_dir: Path) -> Generator[ApplicationContext, None, None]:
    """Isolated context with real process management, rooted in temp_dir."""
    ctx = ApplicationContext.create(
        EmbeddedPgConfig(
            working_dir=temp_dir / "work",
            timeouts=TimeoutConfig(server_startup=30.0),
        )
    )
    try:
        yield ctx
    finally:
        ctx.cluster_registry.close_all()
        ctx.process_supervisor.stop_all()
