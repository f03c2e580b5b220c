"""Test configuration and fixtures for embedded_pg framework tests."""

import io
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from unittest.mock import Mock

import pytest

from embedded_pg.core.context import ApplicationContext
from embedded_pg.core.types import EmbeddedPgConfig, TimeoutConfig

BundleEntry = Union[bytes, str, None]

FAKE_POSTGRES_TREE: Dict[str, BundleEntry] = {
    "bin/": None,
    "bin/initdb": b"#!/bin/sh\nexit 0\n",
    "bin/pg_ctl": b"#!/bin/sh\nexit 0\n",
    "bin/postgres": b"#!/bin/sh\nexit 0\n",
    "share/postgresql/postgresql.conf.sample": b"# sample\n",
    "lib/libpq.so.5.16": b"\x7fELF",
}


def build_bundle(
    path: Path,
    entries: Dict[str, BundleEntry],
    symlinks: Optional[Dict[str, str]] = None,
    hardlinks: Optional[Dict[str, str]] = None,
) -> Path:
    """Write an xz-compressed tar bundle.

    Names ending in ``/`` become directories; bytes become file contents.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:xz") as archive:
        for name, content in entries.items():
            info = tarfile.TarInfo(name.rstrip("/"))
            if name.endswith("/"):
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                archive.addfile(info)
                continue
            data = content.encode() if isinstance(content, str) else (content or b"")
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            archive.addfile(info)
        for name, target in (hardlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.LNKTYPE
            info.linkname = target
            archive.addfile(info)
    return path


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp(prefix="embedded_pg_test_"))
    try:
        yield temp_path
    finally:
        if temp_path.exists():
            shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def make_bundle(temp_dir: Path) -> Callable[..., Path]:
    """Factory for bundle archives inside temp_dir/bundles."""

    def factory(
        name: str = "postgres-linux-x86_64.txz",
        entries: Optional[Dict[str, BundleEntry]] = None,
        **links: Dict[str, str],
    ) -> Path:
        return build_bundle(
            temp_dir / "bundles" / name,
            FAKE_POSTGRES_TREE if entries is None else entries,
            **links,
        )

    return factory


@pytest.fixture
def fast_timeouts() -> TimeoutConfig:
    """Timeouts short enough for unit tests."""
    return TimeoutConfig(
        server_startup=0.5,
        readiness_poll_interval=0.01,
        extraction_wait_attempts=3,
        extraction_poll_interval=0.01,
        process_graceful_stop=1.0,
    )


@pytest.fixture
def pg_config(temp_dir: Path, fast_timeouts: TimeoutConfig) -> EmbeddedPgConfig:
    """Configuration rooted in the test's temporary directory."""
    return EmbeddedPgConfig(working_dir=temp_dir / "work", timeouts=fast_timeouts)


@pytest.fixture
def app_context(pg_config: EmbeddedPgConfig) -> ApplicationContext:
    """Isolated application context with mocked process management."""
    return ApplicationContext.for_testing(
        config=pg_config,
        logger=Mock(),
        port_allocator=Mock(),
        process_executor=Mock(),
        process_supervisor=Mock(),
    )
