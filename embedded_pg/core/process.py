"""Running PostgreSQL's programs: one-shot tools and supervised postmasters.

initdb and pg_ctl go through ProcessExecutor, which waits for them and
captures their output. The postmaster goes through ProcessSupervisor, which
starts it in its own session so the postmaster and every backend it forks can
be signalled as one process group.
"""

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from .enums import OutputMode
from .errors import ProcessError, ProcessStartupError, ProcessTimeoutError
from .log import Logger, get_logger, log_process_event

logger = get_logger(__name__)

# SIGINT asks a postmaster for a "fast" shutdown: roll back and disconnect
# clients, then exit. SIGTERM would wait for every client to leave.
POSTMASTER_SHUTDOWN_SIGNAL = signal.SIGINT
_KILL_WAIT = 5.0


def output_logger_name(command: List[str]) -> str:
    """Logger that receives a child's output lines, named after the executable."""
    return f"process.output.{Path(command[0]).name}"


@dataclass
class ProcessResult:
    """Exit status and captured output of a finished command."""

    returncode: int
    stdout: str
    stderr: str
    duration: float

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass
class ProcessInfo:
    """A supervised process as it was launched."""

    pid: int
    command: List[str]
    start_time: float
    working_dir: Path
    env: Dict[str, str] = field(default_factory=dict)


class ProcessExecutor:
    """Runs a command to completion."""

    def run(
        self,
        command: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> ProcessResult:
        """Run command and return its result.

        Raises:
            ProcessTimeoutError: still running after timeout seconds; it is killed
            ProcessError: could not be launched, or exited non-zero with check=True
        """
        started = time.monotonic()
        log_process_event(logger, "exec.start", command=command, timeout=timeout)
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProcessTimeoutError(
                f"{Path(command[0]).name} did not finish within {timeout}s",
                timeout=timeout or 0.0,
                details={
                    "command": command,
                    "output": _decode(e.stdout) + _decode(e.stderr),
                },
            ) from e
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            raise ProcessError(f"Failed to execute {command[0]}: {e}") from e

        result = ProcessResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.monotonic() - started,
        )
        output_log = get_logger(output_logger_name(command))
        for line in result.output.splitlines():
            if line.strip():
                output_log.debug("%s", line, extra={"event_type": "output"})
        log_process_event(
            logger,
            "exec.exit",
            return_code=result.returncode,
            duration=round(result.duration, 3),
        )

        if check and result.returncode != 0:
            raise ProcessError(
                f"{Path(command[0]).name} exited with code {result.returncode}",
                returncode=result.returncode,
                output=result.output,
                details={"command": command},
            )
        return result


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", "replace")
    return data


class ProcessSupervisor:
    """Owns long-running children keyed by a caller-chosen id."""

    def __init__(self, shutdown_signal: int = POSTMASTER_SHUTDOWN_SIGNAL) -> None:
        self.shutdown_signal = shutdown_signal
        self._processes: Dict[str, subprocess.Popen] = {}
        self._info: Dict[str, ProcessInfo] = {}
        self._lock = threading.Lock()

    def start(
        self,
        process_id: str,
        command: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        output_mode: OutputMode = OutputMode.LOG,
    ) -> ProcessInfo:
        """Launch command in a new session.

        With OutputMode.LOG, stdout and stderr are merged and forwarded line by
        line to the logger named by ``output_logger_name``.

        Raises:
            ProcessStartupError: id already in use, or the command cannot be launched
        """
        with self._lock:
            if process_id in self._processes:
                raise ProcessStartupError(f"Process {process_id} is already running")

        if output_mode == OutputMode.LOG:
            stdout, stderr = subprocess.PIPE, subprocess.STDOUT
        elif output_mode == OutputMode.DISCARD:
            stdout, stderr = subprocess.DEVNULL, subprocess.DEVNULL
        else:
            stdout = stderr = None

        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                text=True,
                bufsize=1,
                start_new_session=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ProcessStartupError(f"Failed to start {process_id}: {e}") from e

        info = ProcessInfo(
            pid=process.pid,
            command=list(command),
            start_time=time.time(),
            working_dir=Path(cwd) if cwd else Path.cwd(),
            env=dict(env or {}),
        )
        with self._lock:
            self._processes[process_id] = process
            self._info[process_id] = info
        log_process_event(logger, "started", pid=process.pid, process_id=process_id)

        if output_mode == OutputMode.LOG:
            threading.Thread(
                target=_forward_output,
                args=(process, get_logger(output_logger_name(command)), process_id),
                name=f"output-{process_id}",
                daemon=True,
            ).start()
        return info

    def stop(
        self, process_id: str, graceful: bool = True, timeout: float = 5.0
    ) -> Optional[int]:
        """Stop a process and stop tracking it.

        A graceful stop sends ``shutdown_signal`` to the process group and
        waits up to timeout seconds before killing it.

        Returns:
            Exit code, or None for an unknown id or a process that would not die
        """
        with self._lock:
            process = self._processes.get(process_id)
        if process is None:
            return None

        try:
            if process.poll() is None and graceful:
                _signal_group(process, self.shutdown_signal)
                try:
                    process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    logger.warning(
                        "%s ignored shutdown signal for %ss; killing it", process_id, timeout
                    )
            if process.poll() is None:
                _signal_group(process, signal.SIGKILL)
                try:
                    process.wait(timeout=_KILL_WAIT)
                except subprocess.TimeoutExpired:
                    kill_process_tree(process.pid)
            log_process_event(
                logger, "stopped", pid=process.pid, process_id=process_id,
                return_code=process.poll(),
            )
            return process.poll()
        finally:
            with self._lock:
                self._processes.pop(process_id, None)
                self._info.pop(process_id, None)

    def is_running(self, process_id: str) -> bool:
        with self._lock:
            process = self._processes.get(process_id)
        return process is not None and process.poll() is None

    def exit_code(self, process_id: str) -> Optional[int]:
        """Exit code of a tracked process that has exited, else None."""
        with self._lock:
            process = self._processes.get(process_id)
        return process.poll() if process is not None else None

    def get_process_info(self, process_id: str) -> Optional[ProcessInfo]:
        with self._lock:
            return self._info.get(process_id)

    def list_processes(self) -> List[str]:
        with self._lock:
            return list(self._processes)

    def stop_all(self, graceful: bool = True, timeout: float = 5.0) -> None:
        for process_id in self.list_processes():
            self.stop(process_id, graceful, timeout)


def _forward_output(process: subprocess.Popen, output_log: Logger, process_id: str) -> None:
    if process.stdout is None:
        return
    try:
        for line in process.stdout:
            line = line.rstrip()
            if line:
                output_log.info(
                    "%s", line, extra={"event_type": "output", "process_id": process_id}
                )
    except (OSError, ValueError) as e:
        logger.debug("Output of %s no longer readable: %s", process_id, e)


def _signal_group(process: subprocess.Popen, signum: int) -> None:
    try:
        os.killpg(process.pid, signum)
    except OSError:
        try:
            process.send_signal(signum)
        except OSError:
            pass  # already gone


def kill_process_tree(root_pid: int, timeout: float = 3.0) -> bool:
    """SIGKILL a process and its descendants, for children that left the group.

    Returns:
        True if everything was gone within timeout
    """
    try:
        root = psutil.Process(root_pid)
        victims = [root] + root.children(recursive=True)
    except psutil.NoSuchProcess:
        return True
    except psutil.Error as e:
        logger.error("Cannot inspect process tree of %s: %s", root_pid, e)
        return False

    for victim in victims:
        try:
            victim.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as e:
            logger.debug("Could not kill %s: %s", victim.pid, e)

    _, alive = psutil.wait_procs(victims, timeout=timeout)
    alive = [p for p in alive if not _is_zombie(p)]
    if alive:
        logger.error(
            "Processes %s survived SIGKILL", ", ".join(str(p.pid) for p in alive)
        )
    return not alive


def _is_zombie(process: psutil.Process) -> bool:
    # Dead but not yet reaped by whoever inherited it
    try:
        return process.status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True
    except psutil.Error:
        return False
