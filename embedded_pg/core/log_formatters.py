"""Log record rendering: JSON lines for files, rich colouring for terminals.

Both renderers understand the ``event_type`` extra set by the event helpers in
log.py and the per-thread context (usually the instance id of the server a
thread is working for).
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text
from rich.theme import Theme

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

EVENT_STYLES = {
    "server": "embedded_pg.server",
    "process": "embedded_pg.process",
    "output": "embedded_pg.output",
    "extraction": "embedded_pg.binaries",
    "pipeline": "embedded_pg.pipeline",
    "event": "embedded_pg.event",
}


class _ThreadFields(threading.local):
    def __init__(self) -> None:
        super().__init__()
        self.fields: Dict[str, Any] = {}


class LogContext:
    """Per-thread fields attached to every record a thread logs."""

    def __init__(self) -> None:
        self._local = _ThreadFields()

    def set_context(self, **kwargs: Any) -> None:
        self._local.fields.update(kwargs)

    def get_context(self) -> Dict[str, Any]:
        return dict(self._local.fields)

    def clear_context(self) -> None:
        self._local.fields = {}

    @contextmanager
    def context(self, **kwargs: Any) -> Iterator[None]:
        """Add fields for the duration of a block, then restore the previous set."""
        saved = self.get_context()
        self.set_context(**kwargs)
        try:
            yield
        finally:
            self._local.fields = saved


_log_context = LogContext()


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through ``extra=`` when the record was logged."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRIBUTES
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for machine-readable log files."""

    def __init__(self, include_context: bool = True) -> None:
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        fields = record_extras(record)
        event_type = fields.pop("event_type", None)
        if event_type is not None:
            entry["event"] = event_type
        if fields:
            entry["fields"] = fields

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_context:
            context = _log_context.get_context()
            if context:
                entry["context"] = context

        return json.dumps(entry, default=str)


class EmbeddedPgRichHandler(RichHandler):
    """Terminal handler that colours events and tags them with their server."""

    THEME = Theme(
        {
            "logging.level.debug": "dim cyan",
            "logging.level.info": "dim blue",
            "logging.level.warning": "yellow",
            "logging.level.error": "red",
            "logging.level.critical": "bold red",
            "embedded_pg.instance": "magenta",
            "embedded_pg.server": "bright_cyan",
            "embedded_pg.process": "bright_blue",
            "embedded_pg.output": "dim white",
            "embedded_pg.binaries": "green",
            "embedded_pg.pipeline": "bright_magenta",
            "embedded_pg.event": "bright_green",
        }
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("console", Console(theme=self.THEME, stderr=True))
        super().__init__(*args, **kwargs)

    def render_message(self, record: logging.LogRecord, message: str) -> Text:
        text = Text()
        instance_id = getattr(record, "instance_id", None)
        if instance_id is None:
            instance_id = _log_context.get_context().get("instance_id")
        if instance_id is not None:
            text.append(f"[{str(instance_id)[:8]}] ", style="embedded_pg.instance")

        body = Text(message)
        style = EVENT_STYLES.get(getattr(record, "event_type", None) or "")
        if style:
            body.stylize(style)
        text.append_text(body)
        return text
