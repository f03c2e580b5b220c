"""Logging for embedded_pg.

Everything logs below the ``embedded_pg`` logger. Nothing is installed on it
until ``configure_logging`` runs, so a library user's own logging setup sees
plain records. The CLI configures a rich console handler and optionally a
JSON-lines file.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from .log_formatters import EmbeddedPgRichHandler, StructuredFormatter, _log_context
from .value_objects import InstanceId

ROOT_LOGGER_NAME = "embedded_pg"

Level = Union[int, str]


class Logger(Protocol):
    """What components need from a logger; lets tests pass a Mock."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class LogManager:
    """Installs and removes the handlers on one package logger."""

    def __init__(self, root_name: str = ROOT_LOGGER_NAME) -> None:
        self._root_name = root_name
        self._installed: List[logging.Handler] = []
        self._lock = threading.Lock()

    @property
    def root_logger(self) -> logging.Logger:
        return logging.getLogger(self._root_name)

    @property
    def is_configured(self) -> bool:
        return bool(self._installed)

    def configure(
        self,
        level: Level = logging.INFO,
        console: bool = True,
        log_file: Optional[Path] = None,
        console_level: Optional[Level] = None,
    ) -> None:
        """Set the package level and install handlers.

        Only the first call installs anything; ``reset`` allows another.
        """
        with self._lock:
            if self._installed:
                return
            self.root_logger.setLevel(level)
            if console:
                handler = EmbeddedPgRichHandler(show_path=False, markup=False)
                handler.setLevel(console_level or level)
                self._install(handler)
            if log_file is not None:
                self._install(_json_file_handler(Path(log_file), level))

    def add_file_handler(self, log_file: Path, level: Level = logging.DEBUG) -> None:
        with self._lock:
            self._install(_json_file_handler(Path(log_file), level))

    def get_logger(self, name: str) -> logging.Logger:
        """Logger for name, moved under the package logger if it is outside it."""
        if name == self._root_name or name.startswith(f"{self._root_name}."):
            return logging.getLogger(name)
        return logging.getLogger(f"{self._root_name}.{name}")

    def reset(self) -> None:
        """Remove and close installed handlers."""
        with self._lock:
            while self._installed:
                handler = self._installed.pop()
                self.root_logger.removeHandler(handler)
                handler.close()

    def _install(self, handler: logging.Handler) -> None:
        self.root_logger.addHandler(handler)
        self._installed.append(handler)


def _json_file_handler(log_file: Path, level: Level) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(level)
    return handler


_log_manager = LogManager()


def configure_logging(**kwargs: Any) -> None:
    _log_manager.configure(**kwargs)


def add_file_logging(log_file: Path, level: Level = logging.DEBUG) -> None:
    """Also write JSON lines to log_file, whether or not logging is configured."""
    _log_manager.add_file_handler(log_file, level)


def get_logger(name: str) -> logging.Logger:
    return _log_manager.get_logger(name)


def reset_logging() -> None:
    _log_manager.reset()


def log_event(logger: Logger, event_type: str, message: str, **kwargs: Any) -> None:
    """Log message at INFO with event_type and kwargs as structured fields."""
    logger.info(message, extra={"event_type": event_type, **kwargs})


def log_process_event(
    logger: Logger, event: str, pid: Optional[int] = None, **kwargs: Any
) -> None:
    extra: Dict[str, Any] = {"event_type": "process", "process_event": event, **kwargs}
    if pid is not None:
        extra["pid"] = pid
    logger.info("Process %s %s", pid, event, extra=extra)


def log_server_event(
    logger: Logger,
    event: str,
    instance_id: Union[str, InstanceId, None] = None,
    **kwargs: Any,
) -> None:
    """Log a lifecycle step of an embedded server (starting, ready, closed...)."""
    shown = None if instance_id is None else str(instance_id)
    extra: Dict[str, Any] = {"event_type": "server", "server_event": event, **kwargs}
    if shown is not None:
        extra["instance_id"] = shown
    logger.info("Server %s %s", shown, event, extra=extra)


def set_log_context(**kwargs: Any) -> None:
    """Attach fields to every record the calling thread logs from now on."""
    _log_context.set_context(**kwargs)


def get_log_context() -> Dict[str, Any]:
    return _log_context.get_context()


def clear_log_context() -> None:
    _log_context.clear_context()


def log_context(**kwargs: Any) -> Any:
    """``with log_context(instance_id=...):`` scoped version of set_log_context."""
    return _log_context.context(**kwargs)
