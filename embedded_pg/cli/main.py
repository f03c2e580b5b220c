"""Main CLI entry point for embedded-pg."""

import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import BaseModel, Field, ConfigDict
from rich.console import Console
from rich.table import Table

from ..core.errors import EmbeddedPgError
from ..core.log import configure_logging, get_logger

app = typer.Typer(
    name="embedded-pg",
    help="Disposable PostgreSQL servers for test suites",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
console = Console()
logger = get_logger(__name__)


class GlobalCliOptions(BaseModel):
    """Global CLI options that can be used across all commands."""

    verbose: int = Field(0, description="Increase verbosity level")
    config_file: Optional[Path] = Field(None, description="Configuration file path")
    log_file: Optional[Path] = Field(None, description="JSON-lines log file")
    log_level: str = Field(
        "WARNING", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    model_config = ConfigDict(use_enum_values=True)


def _app_context(ctx: typer.Context, working_dir: Optional[Path] = None):
    from ..core.config import load_config
    from ..core.context import ApplicationContext

    options: GlobalCliOptions = ctx.obj["cli_options"]
    overrides = {}
    if working_dir is not None:
        overrides["working_dir"] = working_dir
    config = load_config(config_file=options.config_file, **overrides)
    return ApplicationContext.create(config)


def _parse_settings(values: List[str], option: str) -> dict:
    settings = {}
    for value in values:
        key, sep, setting = value.partition("=")
        if not sep or not key:
            console.print(f"[red]Error: {option} expects KEY=VALUE, got {value!r}[/red]")
            raise typer.Exit(2)
        settings[key.strip()] = setting
    return settings


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity level"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR) - explicit level",
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write JSON-lines logs to this file"
    ),
) -> None:
    """embedded-pg: disposable PostgreSQL servers for test suites."""
    if verbose > 0 and log_level is not None:
        console.print("[red]Error: Cannot specify both --verbose and --log-level[/red]")
        raise typer.Exit(1)

    if log_level is None:
        resolved_log_level = (
            "DEBUG" if verbose >= 2 else "INFO" if verbose == 1 else "WARNING"
        )
    else:
        resolved_log_level = log_level

    cli_options = GlobalCliOptions(
        verbose=verbose,
        config_file=config_file,
        log_file=log_file,
        log_level=resolved_log_level,
    )
    ctx.ensure_object(dict)
    ctx.obj["cli_options"] = cli_options

    configure_logging(
        level=cli_options.log_level, console=True, log_file=cli_options.log_file
    )


@app.command()
def version() -> None:
    """Show version information."""
    import psycopg

    from .. import __version__

    table = Table(title="embedded-pg Version Information")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("embedded-pg", __version__)
    table.add_row("psycopg", psycopg.__version__)
    table.add_row("libpq", str(psycopg.pq.version()))
    console.print(table)


@app.command()
def config(ctx: typer.Context) -> None:
    """Show current configuration."""
    try:
        current = _app_context(ctx).config
    except EmbeddedPgError as e:
        console.print(f"[red]Error getting configuration: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="embedded-pg Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Working Directory", str(current.effective_working_dir()))
    if current.binary_path:
        table.add_row("Binary Search Path", ", ".join(str(p) for p in current.binary_path))
    table.add_row("No Cleanup", str(current.no_cleanup))
    table.add_row("Log Level", current.log_level)
    table.add_row("Superuser", current.server.superuser)
    table.add_row("Stop Mode", current.server.stop_mode)
    table.add_row("Output Mode", current.server.output_mode.value)
    for key, value in sorted(current.server.server_config.items()):
        table.add_row(f"Server Config: {key}", value)
    table.add_row("Server Startup Timeout", f"{current.timeouts.server_startup}s")
    table.add_row("initdb Timeout", f"{current.timeouts.initdb}s")
    table.add_row(
        "Extraction Wait",
        f"{current.timeouts.extraction_wait_attempts} x "
        f"{current.timeouts.extraction_poll_interval}s",
    )
    table.add_row("Stale Directory Age", f"{current.timeouts.reclaim_min_age}s")
    console.print(table)


@app.command()
def prepare(
    ctx: typer.Context,
    archive: Optional[Path] = typer.Option(
        None, "--archive", help="Extract this bundle instead of resolving one"
    ),
    working_dir: Optional[Path] = typer.Option(
        None, "--working-dir", "-w", help="Directory for extracted binaries"
    ),
) -> None:
    """Resolve and extract the PostgreSQL binaries for this machine."""
    from ..binaries.directory import UncompressBundleDirectoryResolver
    from ..binaries.resolver import ArchiveFileResolver, BundledBinaryResolver

    app_ctx = _app_context(ctx, working_dir)
    if archive is not None:
        resolver = ArchiveFileResolver(archive)
    else:
        resolver = BundledBinaryResolver(search_path=tuple(app_ctx.config.binary_path))
    try:
        directory = UncompressBundleDirectoryResolver(resolver).get_directory(
            app_ctx.config.effective_working_dir(),
            app_ctx.binary_cache,
            app_ctx.config.timeouts,
        )
    except EmbeddedPgError as e:
        console.print(f"[red]Error preparing binaries: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]PostgreSQL binaries ready in {directory}[/green]")


@app.command()
def start(
    ctx: typer.Context,
    port: int = typer.Option(0, "--port", "-p", help="Port to listen on (0 picks one)"),
    data_dir: Optional[Path] = typer.Option(
        None, "--data-dir", help="Use this data directory"
    ),
    keep: bool = typer.Option(
        False, "--keep", help="Reuse an initialized data directory and keep it on exit"
    ),
    bin_dir: Optional[Path] = typer.Option(
        None, "--bin-dir", help="Installed PostgreSQL tree to run instead of a bundle"
    ),
    working_dir: Optional[Path] = typer.Option(
        None, "--working-dir", "-w", help="Directory for binaries and data directories"
    ),
    server_config: List[str] = typer.Option(
        [], "--set", "-s", help="Server setting as KEY=VALUE (repeatable)"
    ),
) -> None:
    """Start a server and keep it running until interrupted."""
    from ..instances.builder import EmbeddedPostgresBuilder

    app_ctx = _app_context(ctx, working_dir)
    builder = EmbeddedPostgresBuilder(app_ctx).set_port(port).set_clean_data_directory(not keep)
    if data_dir is not None:
        builder.set_data_directory(data_dir)
    if bin_dir is not None:
        builder.set_postgres_binary_directory(bin_dir)
    for key, value in _parse_settings(server_config, "--set").items():
        builder.set_server_config(key, value)

    try:
        pg = builder.start()
    except EmbeddedPgError as e:
        console.print(f"[red]Error starting server: {e}[/red]")
        raise typer.Exit(1)

    with pg:
        admin = pg.get_postgres_database()
        table = Table(title="Embedded PostgreSQL")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Instance", str(pg.instance_id))
        table.add_row("Port", str(pg.port))
        table.add_row("Data Directory", str(pg.data_directory.path))
        table.add_row("Connection", admin.conninfo)
        table.add_row("URL", admin.url)
        console.print(table)
        console.print("[yellow]Press Ctrl+C to stop[/yellow]")

        stop_requested = threading.Event()
        signal.signal(signal.SIGTERM, lambda signum, frame: stop_requested.set())
        while not stop_requested.wait(0.5):
            if not pg.is_running():
                console.print("[red]Server exited unexpectedly[/red]")
                raise typer.Exit(1)


@app.command()
def reclaim(
    ctx: typer.Context,
    working_dir: Optional[Path] = typer.Option(
        None, "--working-dir", "-w", help="Working directory to scan"
    ),
    parent: Optional[Path] = typer.Option(
        None, "--parent", help="Scan this directory instead of the working directory's data/"
    ),
    bin_dir: Optional[Path] = typer.Option(
        None, "--bin-dir", help="PostgreSQL tree whose pg_ctl stops orphaned servers"
    ),
) -> None:
    """Delete data directories abandoned by crashed runs."""
    from ..instances.builder import DATA_DIRECTORY_PARENT, pg_ctl_stopper
    from ..instances.data_directory import DataDirectoryManager

    app_ctx = _app_context(ctx, working_dir)
    scan_dir = parent or app_ctx.config.effective_working_dir() / DATA_DIRECTORY_PARENT
    stopper = pg_ctl_stopper(bin_dir, app_ctx) if bin_dir is not None else None
    manager = DataDirectoryManager(scan_dir, timeouts=app_ctx.config.timeouts, stopper=stopper)
    if not scan_dir.is_dir():
        console.print(f"[yellow]Nothing to reclaim: {scan_dir} does not exist[/yellow]")
        return

    reclaimed = manager.reclaim_stale()
    if not reclaimed:
        console.print("[green]No stale data directories found[/green]")
        return
    table = Table(title=f"Reclaimed from {scan_dir}")
    table.add_column("Directory", style="cyan")
    for path in reclaimed:
        table.add_row(path.name)
    console.print(table)


def cli_main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except (EmbeddedPgError, RuntimeError, OSError, ValueError) as e:
        logger.error("Unexpected error: %s", e)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
