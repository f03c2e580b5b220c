"""Embedded PostgreSQL server with lifecycle management.

A server moves through UNINITIALIZED, INITIALIZED, STARTING, READY, STOPPING
and STOPPED; a failed start ends in FAILED. close() is idempotent and also
runs from an interpreter exit hook as a last resort.
"""

import atexit
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, TYPE_CHECKING

from ..core.context import ApplicationContext
from ..core.enums import OutputMode, ServerState
from ..core.errors import (
    AlreadyRunningError,
    EmbeddedPgError,
    InitializationError,
    ProcessError,
    ServerStartupError,
    ServerStateError,
    StartupTimeoutError,
)
from ..core.log import Logger, get_logger, log_context, log_server_event
from ..core.process import ProcessInfo
from ..core.time import poll_until
from ..core.value_objects import InstanceId
from ..provisioning.datasource import PgDataSource
from ..utils.urls import jdbc_url
from .command_builder import PostgresCommandBuilder
from .data_directory import DataDirectory
from .health_checker import PROBE_ERRORS, HealthChecker, PostgresHealthChecker

if TYPE_CHECKING:
    from .builder import EmbeddedPostgresBuilder

logger = get_logger(__name__)


@dataclass
class ServerInfo:
    """Snapshot of an embedded server for diagnostics."""

    instance_id: InstanceId
    state: ServerState
    port: int
    install_dir: Path
    data_dir: Path
    pid: Optional[int] = None


class EmbeddedPostgres:
    """One postgres process with its own port and data directory.

    Use ``EmbeddedPostgres.builder()`` to configure and start an instance, and
    close it (or use it as a context manager) when done.
    """

    def __init__(
        self,
        *,
        install_dir: Path,
        data_directory: DataDirectory,
        port: int,
        app_context: ApplicationContext,
        server_config: Optional[Mapping[str, str]] = None,
        locale_config: Optional[Mapping[str, str]] = None,
        connect_config: Optional[Mapping[str, str]] = None,
        startup_timeout: Optional[float] = None,
        output_mode: Optional[OutputMode] = None,
        instance_id: Optional[InstanceId] = None,
    ) -> None:
        self.instance_id = instance_id or InstanceId.generate()
        self.install_dir = Path(install_dir)
        self.data_directory = data_directory
        self.port = port
        self._app_context = app_context
        settings = app_context.config.server
        self.server_config: Dict[str, str] = dict(settings.server_config)
        self.server_config.update(server_config or {})
        self.locale_config: Dict[str, str] = dict(locale_config or {})
        self.connect_config: Dict[str, str] = dict(connect_config or {})
        self.startup_timeout = (
            startup_timeout
            if startup_timeout is not None
            else app_context.config.timeouts.server_startup
        )
        self.output_mode = output_mode or settings.output_mode

        self._state = ServerState.UNINITIALIZED
        self._state_lock = threading.RLock()
        self._closed = False
        self._start_requested = False
        self._directory_claimed = False
        self._process_info: Optional[ProcessInfo] = None
        self._commands = PostgresCommandBuilder(
            self.install_dir, self._logger, superuser=settings.superuser
        )
        self._health_checker: HealthChecker = PostgresHealthChecker(
            self._logger,
            settings=settings,
            timeouts=app_context.config.timeouts,
            connect_options=self.connect_config,
        )

    @classmethod
    def builder(
        cls, app_context: Optional[ApplicationContext] = None
    ) -> "EmbeddedPostgresBuilder":
        """Start configuring a new server."""
        from .builder import EmbeddedPostgresBuilder

        return EmbeddedPostgresBuilder(app_context)

    @classmethod
    def start_default(cls) -> "EmbeddedPostgres":
        """Start a server with every setting at its default."""
        return cls.builder().start()

    @property
    def _logger(self) -> Logger:
        return self._app_context.logger

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def process_id(self) -> str:
        return str(self.instance_id)

    # Lifecycle

    def start(self) -> "EmbeddedPostgres":
        """Initialize if needed, launch the server and wait until it answers queries.

        Raises:
            AlreadyRunningError: data directory is owned by another server
            InitializationError: initdb failed
            StartupTimeoutError: server did not become ready in time
            ServerStartupError: server could not be launched
        """
        with self._state_lock:
            if self._start_requested or self._closed:
                raise ServerStateError(
                    f"Server {self.instance_id} cannot start from state {self._state.value}"
                )
            self._start_requested = True

        log_server_event(
            self._logger, "starting", self.instance_id, port=self.port,
            data_dir=str(self.data_directory.path),
        )
        started = time.monotonic()
        try:
            with log_context(instance_id=str(self.instance_id)):
                self._initialize()
                with self._state_lock:
                    self._state = ServerState.STARTING
                self._lock_data_directory()
                self._launch()
                self._wait_until_ready()
        except BaseException as e:
            with self._state_lock:
                self._state = ServerState.FAILED
                self._closed = True
            log_server_event(self._logger, "start_failed", self.instance_id, error=str(e))
            self._release_resources(stop_server=True)
            raise

        with self._state_lock:
            self._state = ServerState.READY
        log_server_event(
            self._logger,
            "ready",
            self.instance_id,
            port=self.port,
            duration=time.monotonic() - started,
        )
        return self

    def close(self) -> None:
        """Stop the server, release its lock and port, and delete a clean data directory.

        Safe to call more than once and from the exit hook; shutdown errors are
        logged, never raised.
        """
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            was_running = self._state in (ServerState.STARTING, ServerState.READY)
            if was_running:
                self._state = ServerState.STOPPING

        if was_running:
            log_server_event(self._logger, "stopping", self.instance_id)
        self._release_resources(stop_server=was_running)
        with self._state_lock:
            if self._state != ServerState.FAILED:
                self._state = ServerState.STOPPED
        log_server_event(self._logger, "closed", self.instance_id)

    def __enter__(self) -> "EmbeddedPostgres":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def is_running(self) -> bool:
        return self._app_context.process_supervisor.is_running(self.process_id)

    # Connection accessors

    def get_postgres_database(
        self, properties: Optional[Mapping[str, str]] = None
    ) -> PgDataSource:
        settings = self._app_context.config.server
        return self.get_database(settings.superuser, settings.admin_database, properties)

    def get_template_database(
        self, properties: Optional[Mapping[str, str]] = None
    ) -> PgDataSource:
        settings = self._app_context.config.server
        return self.get_database(settings.superuser, settings.template_database, properties)

    def get_database(
        self, user: str, database: str, properties: Optional[Mapping[str, str]] = None
    ) -> PgDataSource:
        options = dict(self.connect_config)
        options.update(properties or {})
        return PgDataSource.create(
            self.port,
            database,
            user,
            host=self._app_context.config.server.host,
            options=options,
        )

    def get_jdbc_url(self, user: str, database: str) -> str:
        return jdbc_url(self.port, database, user, host=self._app_context.config.server.host)

    def get_port(self) -> int:
        return self.port

    def get_info(self) -> ServerInfo:
        return ServerInfo(
            instance_id=self.instance_id,
            state=self._state,
            port=self.port,
            install_dir=self.install_dir,
            data_dir=self.data_directory.path,
            pid=self._process_info.pid if self._process_info else None,
        )

    # Internals

    def _initialize(self) -> None:
        self.data_directory.ensure_not_in_use()
        self._directory_claimed = True
        if not self.data_directory.needs_initialization():
            self._state = ServerState.INITIALIZED
            return

        if any(self.data_directory.path.iterdir()):
            self._logger.warning(
                "Re-initializing non-empty data directory %s", self.data_directory.path
            )
            self.data_directory.empty()

        command = self._commands.initdb(self.data_directory.path, self.locale_config)
        started = time.monotonic()
        try:
            self._app_context.process_executor.run(
                command,
                timeout=self._app_context.config.timeouts.initdb,
                check=True,
            )
        except ProcessError as e:
            raise InitializationError(
                f"initdb failed for {self.data_directory.path}: {e.message}",
                details={"output": e.output, "returncode": e.returncode},
            ) from e
        self._logger.info(
            "%s initdb completed in %.1fs", self.instance_id, time.monotonic() - started
        )
        self._state = ServerState.INITIALIZED

    def _lock_data_directory(self) -> None:
        try:
            self.data_directory.lock()
        except AlreadyRunningError:
            # Lost a race for the directory; it belongs to the winner now
            self._directory_claimed = False
            raise

    def _launch(self) -> None:
        command = self._commands.postgres(
            self.data_directory.path, self.port, self.server_config
        )
        try:
            self._process_info = self._app_context.process_supervisor.start(
                self.process_id,
                command,
                cwd=self.data_directory.path,
                output_mode=self.output_mode,
            )
        except ProcessError as e:
            raise ServerStartupError(
                f"Failed to launch postgres for {self.instance_id}: {e.message}"
            ) from e
        atexit.register(self._close_at_exit)
        self._logger.info(
            "%s postmaster started as pid %s on port %s; waiting up to %ss for startup",
            self.instance_id,
            self._process_info.pid,
            self.port,
            self.startup_timeout,
        )

    def _server_exited(self) -> Optional[BaseException]:
        code = self._app_context.process_supervisor.exit_code(self.process_id)
        if code is None:
            return None
        return ServerStartupError(
            f"postgres for {self.instance_id} exited with code {code} during startup",
            details={"returncode": code},
        )

    def _wait_until_ready(self) -> None:
        settings = self._app_context.config.server
        outcome = poll_until(
            lambda: self._health_checker.probe(self.port, settings.admin_database),
            timeout=self.startup_timeout,
            interval=self._app_context.config.timeouts.readiness_poll_interval,
            retry_on=PROBE_ERRORS,
            is_done=lambda _: True,
            abort=self._server_exited,
        )
        if not outcome.satisfied:
            error = StartupTimeoutError(
                f"Gave up waiting for server to start after {outcome.elapsed * 1000:.0f}ms",
                timeout=self.startup_timeout,
                details={"attempts": outcome.attempts},
            )
            raise error from outcome.last_error

    def _stop_server(self) -> None:
        if self._process_info is None:
            return
        settings = self._app_context.config.server
        timeouts = self._app_context.config.timeouts
        supervisor = self._app_context.process_supervisor
        if supervisor.exit_code(self.process_id) is None and supervisor.get_process_info(
            self.process_id
        ):
            command = self._commands.pg_ctl_stop(
                self.data_directory.path, settings.stop_mode, timeouts.pg_ctl_stop_wait
            )
            try:
                self._app_context.process_executor.run(
                    command, timeout=timeouts.stop_command, check=True
                )
            except ProcessError as e:
                self._logger.error(
                    "Could not stop postmaster %s with pg_ctl: %s", self.instance_id, e
                )
        # Reaps the process, and kills it if pg_ctl did not manage to
        supervisor.stop(
            self.process_id, graceful=True, timeout=timeouts.process_graceful_stop
        )

    def _release_resources(self, stop_server: bool) -> None:
        if stop_server:
            try:
                self._stop_server()
            except (EmbeddedPgError, OSError) as e:
                self._logger.error("Error stopping server %s: %s", self.instance_id, e)
        atexit.unregister(self._close_at_exit)
        self.data_directory.unlock()
        self._app_context.port_allocator.release_port(self.port)

        config = self._app_context.config
        if not (self.data_directory.clean and self._directory_claimed):
            return
        if not config.no_cleanup:
            self.data_directory.remove()
        else:
            self._logger.info(
                "Keeping data directory %s (no_cleanup is set)", self.data_directory.path
            )

    def _close_at_exit(self) -> None:
        try:
            self.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Failed to close %s at exit: %s", self.instance_id, e)

    def __repr__(self) -> str:
        return (
            f"EmbeddedPostgres({self.instance_id}, port={self.port}, "
            f"state={self._state.value})"
        )
