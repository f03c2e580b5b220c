"""
Unit tests for core/process.py.

Runs tiny shell commands; nothing here needs PostgreSQL.
"""

import signal
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import patch

import psutil
import pytest

from embedded_pg.core.enums import OutputMode
from embedded_pg.core.errors import ProcessError, ProcessStartupError, ProcessTimeoutError
from embedded_pg.core.process import (
    ProcessExecutor,
    ProcessSupervisor,
    kill_process_tree,
    output_logger_name,
)

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")


class TestOutputLoggerName:
    """Test naming of child output loggers."""

    def test_named_after_executable(self) -> None:
        assert output_logger_name(["/usr/lib/postgresql/16/bin/initdb", "-D", "x"]) == (
            "process.output.initdb"
        )


class TestProcessExecutor:
    """Test one-shot command execution."""

    def setup_method(self) -> None:
        self.executor = ProcessExecutor()

    def test_captures_output(self) -> None:
        result = self.executor.run(["sh", "-c", "echo out; echo err >&2"])
        assert result.returncode == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.output == "out\n\nerr\n"

    def test_nonzero_without_check(self) -> None:
        assert self.executor.run(["sh", "-c", "exit 3"]).returncode == 3

    def test_nonzero_with_check(self) -> None:
        with pytest.raises(ProcessError) as exc_info:
            self.executor.run(["sh", "-c", "echo broken >&2; exit 3"], check=True)
        assert exc_info.value.returncode == 3
        assert "broken" in exc_info.value.output

    def test_missing_executable(self, temp_dir: Path) -> None:
        with pytest.raises(ProcessError, match="Failed to execute"):
            self.executor.run([str(temp_dir / "no-such-binary")])

    def test_timeout(self) -> None:
        with pytest.raises(ProcessTimeoutError) as exc_info:
            self.executor.run(["sleep", "5"], timeout=0.1)
        assert exc_info.value.timeout == 0.1


class TestProcessSupervisor:
    """Test supervised long-running processes."""

    def setup_method(self) -> None:
        self.supervisor = ProcessSupervisor()

    def teardown_method(self) -> None:
        self.supervisor.stop_all(graceful=False)

    def test_unknown_process(self) -> None:
        assert self.supervisor.is_running("nonexistent") is False
        assert self.supervisor.stop("nonexistent") is None
        assert self.supervisor.exit_code("nonexistent") is None

    def test_start_and_stop(self) -> None:
        info = self.supervisor.start("sleeper", ["sleep", "30"], output_mode=OutputMode.DISCARD)
        assert info.pid > 0
        assert self.supervisor.is_running("sleeper")
        assert "sleeper" in self.supervisor.list_processes()

        returncode = self.supervisor.stop("sleeper", timeout=2.0)
        assert returncode is not None
        assert not self.supervisor.is_running("sleeper")
        assert self.supervisor.list_processes() == []

    def test_duplicate_id_rejected(self) -> None:
        self.supervisor.start("dup", ["sleep", "30"], output_mode=OutputMode.DISCARD)
        with pytest.raises(ProcessStartupError):
            self.supervisor.start("dup", ["sleep", "30"], output_mode=OutputMode.DISCARD)

    def test_exit_code_of_finished_process(self) -> None:
        self.supervisor.start("quick", ["sh", "-c", "exit 7"], output_mode=OutputMode.DISCARD)
        deadline = time.monotonic() + 5
        while self.supervisor.exit_code("quick") is None and time.monotonic() < deadline:
            time.sleep(0.01)
        assert self.supervisor.exit_code("quick") == 7
        assert self.supervisor.stop("quick") == 7
        assert self.supervisor.list_processes() == []

    def test_missing_executable(self, temp_dir: Path) -> None:
        with pytest.raises(ProcessStartupError):
            self.supervisor.start("missing", [str(temp_dir / "nope")])

    def test_stop_uses_shutdown_signal(self) -> None:
        supervisor = ProcessSupervisor(shutdown_signal=signal.SIGTERM)
        supervisor.start(
            "trapper",
            ["sh", "-c", "trap 'exit 42' TERM; while true; do sleep 0.05; done"],
            output_mode=OutputMode.DISCARD,
        )
        time.sleep(0.2)
        assert supervisor.stop("trapper", timeout=5.0) == 42

    def test_output_forwarded_to_logger(self) -> None:
        command = ["sh", "-c", "echo hello from child"]
        with patch("embedded_pg.core.process.get_logger") as get_logger:
            self.supervisor.start("talker", command)
            deadline = time.monotonic() + 5
            output_log = get_logger.return_value
            while not output_log.info.called and time.monotonic() < deadline:
                time.sleep(0.01)
        get_logger.assert_called_with(output_logger_name(command))
        args, kwargs = output_log.info.call_args
        assert args[1] == "hello from child"
        assert kwargs["extra"]["process_id"] == "talker"


class TestKillProcessTree:
    """Test killing a process together with its children."""

    def test_kills_parent_and_children(self) -> None:
        parent = subprocess.Popen(["sh", "-c", "sleep 30 & sleep 30 & wait"])
        deadline = time.monotonic() + 5
        while not psutil.Process(parent.pid).children() and time.monotonic() < deadline:
            time.sleep(0.01)
        children = [child.pid for child in psutil.Process(parent.pid).children()]
        assert children

        assert kill_process_tree(parent.pid) is True
        parent.wait(timeout=5)
        for pid in children:
            try:
                assert psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
            except psutil.NoSuchProcess:
                pass

    def test_missing_process(self) -> None:
        assert kill_process_tree(2**22 + 12345) is True
