"""Tests for data directories and stale directory reclamation."""

import os
import time
from pathlib import Path
from unittest.mock import Mock

import pytest

from embedded_pg.core.errors import AlreadyRunningError, ProcessError
from embedded_pg.core.types import TimeoutConfig
from embedded_pg.instances.data_directory import (
    LOCK_FILE_NAME,
    POSTGRESQL_CONF,
    POSTMASTER_PID,
    DataDirectory,
    DataDirectoryManager,
)
from embedded_pg.utils.filelock import FileLock


def _age(path: Path, seconds: float) -> None:
    old = time.time() - seconds
    os.utime(path, (old, old))


def _abandoned(parent: Path, name: str, age: float = 3600, running: bool = False) -> Path:
    directory = parent / name
    directory.mkdir(parents=True)
    (directory / LOCK_FILE_NAME).write_text("12345\n")
    if running:
        (directory / POSTMASTER_PID).write_text("12345\n")
    _age(directory / LOCK_FILE_NAME, age)
    return directory


class TestDataDirectory:
    """Test DataDirectory locking and initialization state."""

    def test_needs_initialization(self, temp_dir: Path) -> None:
        assert DataDirectory(temp_dir, clean=True).needs_initialization()
        assert DataDirectory(temp_dir, clean=False).needs_initialization()
        (temp_dir / "postgresql.conf").write_text("")
        assert not DataDirectory(temp_dir, clean=False).needs_initialization()
        assert DataDirectory(temp_dir, clean=True).needs_initialization()

    def test_lock_and_unlock(self, temp_dir: Path) -> None:
        data_dir = DataDirectory(temp_dir)
        data_dir.lock()
        assert data_dir.is_locked
        assert data_dir.lock_file == temp_dir / LOCK_FILE_NAME
        data_dir.unlock()
        assert not data_dir.is_locked

    def test_second_owner_rejected(self, temp_dir: Path) -> None:
        first = DataDirectory(temp_dir)
        first.lock()
        try:
            with pytest.raises(AlreadyRunningError):
                DataDirectory(temp_dir).lock()
            with pytest.raises(AlreadyRunningError):
                DataDirectory(temp_dir).ensure_not_in_use()
        finally:
            first.unlock()

    def test_ensure_not_in_use_when_free(self, temp_dir: Path) -> None:
        DataDirectory(temp_dir).ensure_not_in_use()
        (temp_dir / LOCK_FILE_NAME).write_text("")
        DataDirectory(temp_dir).ensure_not_in_use()

    def test_empty_keeps_directory(self, temp_dir: Path) -> None:
        (temp_dir / "base").mkdir()
        (temp_dir / "PG_VERSION").write_text("16")
        data_dir = DataDirectory(temp_dir)
        data_dir.empty()
        assert temp_dir.exists()
        assert list(temp_dir.iterdir()) == []

    def test_remove(self, temp_dir: Path) -> None:
        path = temp_dir / "data"
        path.mkdir()
        assert DataDirectory(path).remove()
        assert not path.exists()


class TestDataDirectoryManager:
    """Test allocation and reclamation."""

    def test_prepare_generates_fresh_directory(self, temp_dir: Path) -> None:
        manager = DataDirectoryManager(temp_dir / "data")
        first = manager.prepare()
        second = manager.prepare()
        assert first.path.parent == temp_dir / "data"
        assert first.path != second.path
        assert first.path.is_dir()
        assert first.clean

    def test_prepare_explicit_directory(self, temp_dir: Path) -> None:
        manager = DataDirectoryManager(temp_dir / "data")
        data_dir = manager.prepare(temp_dir / "mine", clean=False)
        assert data_dir.path == temp_dir / "mine"
        assert data_dir.path.is_dir()
        assert not data_dir.clean

    def test_reclaims_abandoned_directory(self, temp_dir: Path) -> None:
        stale = _abandoned(temp_dir, "stale")
        stopper = Mock()

        reclaimed = DataDirectoryManager(temp_dir, stopper=stopper).reclaim_stale()

        assert reclaimed == [stale]
        assert not stale.exists()
        stopper.assert_not_called()

    def test_stops_orphaned_postmaster(self, temp_dir: Path) -> None:
        stale = _abandoned(temp_dir, "stale", running=True)
        stopper = Mock()

        DataDirectoryManager(temp_dir, stopper=stopper).reclaim_stale()

        stopper.assert_called_once_with(stale)
        assert not stale.exists()

    def test_stopper_failure_still_removes(self, temp_dir: Path) -> None:
        stale = _abandoned(temp_dir, "stale", running=True)
        stopper = Mock(side_effect=ProcessError("pg_ctl failed", returncode=1))

        assert DataDirectoryManager(temp_dir, stopper=stopper).reclaim_stale() == [stale]
        assert not stale.exists()

    def test_young_directory_kept(self, temp_dir: Path) -> None:
        young = _abandoned(temp_dir, "young", age=10)
        assert DataDirectoryManager(temp_dir).reclaim_stale() == []
        assert young.exists()

    def test_threshold_is_configurable(self, temp_dir: Path) -> None:
        young = _abandoned(temp_dir, "young", age=10)
        manager = DataDirectoryManager(temp_dir, timeouts=TimeoutConfig(reclaim_min_age=5))
        assert manager.reclaim_stale() == [young]

    def test_clock_injection(self, temp_dir: Path) -> None:
        young = _abandoned(temp_dir, "young", age=0)
        manager = DataDirectoryManager(temp_dir, clock=lambda: time.time() + 3600)
        assert manager.reclaim_stale() == [young]

    def test_locked_directory_kept(self, temp_dir: Path) -> None:
        busy = _abandoned(temp_dir, "busy")
        with FileLock(busy / LOCK_FILE_NAME):
            _age(busy / LOCK_FILE_NAME, 3600)
            assert DataDirectoryManager(temp_dir).reclaim_stale() == []
        assert busy.exists()

    def test_directory_without_lock_file_kept(self, temp_dir: Path) -> None:
        (temp_dir / "other").mkdir()
        (temp_dir / "loose-file").write_text("")
        assert DataDirectoryManager(temp_dir).reclaim_stale() == []
        assert (temp_dir / "other").exists()

    def test_missing_parent(self, temp_dir: Path) -> None:
        assert DataDirectoryManager(temp_dir / "absent").reclaim_stale() == []

    def test_prepare_reclaims_first(self, temp_dir: Path) -> None:
        stale = _abandoned(temp_dir, "stale")
        DataDirectoryManager(temp_dir).prepare()
        assert not stale.exists()

    def test_prepare_keeps_requested_directory_with_old_lock(self, temp_dir: Path) -> None:
        reused = temp_dir / "mydata"
        reused.mkdir()
        (reused / POSTGRESQL_CONF).write_text("")
        previous_run = DataDirectory(reused, clean=False)
        previous_run.lock()
        previous_run.unlock()
        _age(reused / LOCK_FILE_NAME, 3600)
        stale = _abandoned(temp_dir, "stale")

        data_directory = DataDirectoryManager(temp_dir).prepare(reused, clean=False)

        assert data_directory.path == reused
        assert (reused / POSTGRESQL_CONF).exists()
        assert not data_directory.needs_initialization()
        assert not stale.exists()

    def test_reclaim_skips_kept_directory(self, temp_dir: Path) -> None:
        kept = _abandoned(temp_dir, "kept")
        other = _abandoned(temp_dir, "other")
        reclaimed = DataDirectoryManager(temp_dir).reclaim_stale(keep=kept)
        assert reclaimed == [other]
        assert kept.exists()
