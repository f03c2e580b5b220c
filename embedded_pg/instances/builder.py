"""Fluent builder for embedded PostgreSQL servers."""

from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple

from ..binaries.directory import (
    DirectoryResolver,
    LocalDirectoryResolver,
    UncompressBundleDirectoryResolver,
)
from ..binaries.resolver import BinaryResolver, BundledBinaryResolver
from ..core.context import ApplicationContext
from ..core.enums import OutputMode
from ..core.log import get_logger
from .command_builder import PostgresCommandBuilder
from .data_directory import DataDirectoryManager
from .server import EmbeddedPostgres

logger = get_logger(__name__)

DATA_DIRECTORY_PARENT = "data"


def pg_ctl_stopper(
    install_dir: Path, ctx: ApplicationContext
) -> Callable[[Path], None]:
    """Stops whatever postmaster runs in a data directory, using pg_ctl from install_dir."""
    commands = PostgresCommandBuilder(
        install_dir, ctx.logger, superuser=ctx.config.server.superuser
    )

    def stop(data_dir: Path) -> None:
        command = commands.pg_ctl_stop(
            data_dir, ctx.config.server.stop_mode, ctx.config.timeouts.pg_ctl_stop_wait
        )
        ctx.process_executor.run(
            command, timeout=ctx.config.timeouts.stop_command, check=True
        )

    return stop


def _frozen(mapping: Mapping[str, str]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted(mapping.items()))


class EmbeddedPostgresBuilder:
    """Collects server settings and starts an ``EmbeddedPostgres``.

    Every setter returns the builder so calls can be chained:

        pg = (EmbeddedPostgres.builder()
              .set_port(5433)
              .set_server_config("log_statement", "all")
              .start())
    """

    def __init__(self, app_context: Optional[ApplicationContext] = None) -> None:
        self._app_context = app_context
        self._startup_timeout: Optional[float] = None
        self._clean_data_directory = True
        self._data_directory: Optional[Path] = None
        self._working_directory: Optional[Path] = None
        self._server_config: Dict[str, str] = {}
        self._locale_config: Dict[str, str] = {}
        self._connect_config: Dict[str, str] = {}
        self._port = 0
        self._binary_resolver: Optional[BinaryResolver] = None
        self._directory_resolver: Optional[DirectoryResolver] = None
        self._output_mode: Optional[OutputMode] = None

    @property
    def app_context(self) -> ApplicationContext:
        if self._app_context is None:
            self._app_context = ApplicationContext.default()
        return self._app_context

    def set_startup_timeout(self, seconds: float) -> "EmbeddedPostgresBuilder":
        if seconds < 0:
            raise ValueError("Negative startup timeout")
        self._startup_timeout = float(seconds)
        return self

    def set_clean_data_directory(self, clean: bool) -> "EmbeddedPostgresBuilder":
        """Re-initialize on start and delete on close; defaults to True."""
        self._clean_data_directory = clean
        return self

    def set_data_directory(self, path: Path) -> "EmbeddedPostgresBuilder":
        self._data_directory = Path(path)
        return self

    def set_server_config(self, key: str, value: Any) -> "EmbeddedPostgresBuilder":
        self._server_config[key] = str(value)
        return self

    def set_locale_config(self, key: str, value: Any) -> "EmbeddedPostgresBuilder":
        self._locale_config[key] = str(value)
        return self

    def set_connect_config(self, key: str, value: Any) -> "EmbeddedPostgresBuilder":
        self._connect_config[key] = str(value)
        return self

    def set_override_working_directory(self, path: Path) -> "EmbeddedPostgresBuilder":
        """Directory for extracted binaries and generated data directories."""
        self._working_directory = Path(path)
        return self

    def set_port(self, port: int) -> "EmbeddedPostgresBuilder":
        """Listen on ``port``; 0 picks a free one."""
        if port < 0 or port > 65535:
            raise ValueError(f"Invalid port: {port}")
        self._port = port
        return self

    def set_binary_resolver(self, resolver: BinaryResolver) -> "EmbeddedPostgresBuilder":
        self._binary_resolver = resolver
        self._directory_resolver = None
        return self

    def set_directory_resolver(
        self, resolver: DirectoryResolver
    ) -> "EmbeddedPostgresBuilder":
        self._directory_resolver = resolver
        self._binary_resolver = None
        return self

    def set_postgres_binary_directory(self, path: Path) -> "EmbeddedPostgresBuilder":
        """Use an installed PostgreSQL tree instead of a bundled archive."""
        return self.set_directory_resolver(LocalDirectoryResolver(Path(path)))

    def set_output_mode(self, mode: OutputMode) -> "EmbeddedPostgresBuilder":
        self._output_mode = OutputMode(mode)
        return self

    def directory_resolver(self) -> DirectoryResolver:
        if self._directory_resolver is not None:
            return self._directory_resolver
        resolver = self._binary_resolver
        if resolver is None:
            resolver = BundledBinaryResolver(
                search_path=tuple(self.app_context.config.binary_path)
            )
        return UncompressBundleDirectoryResolver(resolver)

    def working_directory(self) -> Path:
        if self._working_directory is not None:
            return self._working_directory
        return self.app_context.config.effective_working_dir()

    def settings_key(self) -> Hashable:
        """Everything that changes what a started server looks like."""
        return (
            self._startup_timeout,
            self._clean_data_directory,
            self._data_directory,
            self._working_directory,
            _frozen(self._server_config),
            _frozen(self._locale_config),
            _frozen(self._connect_config),
            self._port,
            self._binary_resolver,
            self._directory_resolver,
            self._output_mode,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EmbeddedPostgresBuilder):
            return NotImplemented
        return self.settings_key() == other.settings_key()

    def __hash__(self) -> int:
        return hash(self.settings_key())

    def start(self) -> EmbeddedPostgres:
        """Resolve binaries, claim a port and data directory, and start the server."""
        ctx = self.app_context
        working_dir = self.working_directory()
        install_dir = self.directory_resolver().get_directory(
            working_dir, ctx.binary_cache, ctx.config.timeouts
        )
        logger.debug("Using PostgreSQL installation at %s", install_dir)

        port = ctx.port_allocator.allocate_port(self._port or None)
        try:
            manager = DataDirectoryManager(
                working_dir / DATA_DIRECTORY_PARENT,
                timeouts=ctx.config.timeouts,
                stopper=pg_ctl_stopper(install_dir, ctx),
            )
            data_directory = manager.prepare(
                self._data_directory, clean=self._clean_data_directory
            )
            server = EmbeddedPostgres(
                install_dir=install_dir,
                data_directory=data_directory,
                port=port,
                app_context=ctx,
                server_config=self._server_config,
                locale_config=self._locale_config,
                connect_config=self._connect_config,
                startup_timeout=self._startup_timeout,
                output_mode=self._output_mode,
            )
        except BaseException:
            ctx.port_allocator.release_port(port)
            raise
        return server.start()

    def __repr__(self) -> str:
        return f"EmbeddedPostgresBuilder(port={self._port}, data_directory={self._data_directory})"
