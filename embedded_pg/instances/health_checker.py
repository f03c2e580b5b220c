"""Readiness probing for embedded PostgreSQL servers."""

import math
import socket
import time
from typing import Mapping, Optional, Protocol

import psycopg

from ..core.errors import HealthCheckError
from ..core.log import Logger
from ..core.types import HealthStatus, ServerSettings, TimeoutConfig

# Exceptions that mean "not ready yet" rather than a bug
PROBE_ERRORS = (OSError, psycopg.Error, HealthCheckError)


class HealthChecker(Protocol):
    """Protocol for server health checkers to enable dependency injection."""

    def probe(self, port: int, database: Optional[str] = None) -> None:
        """Raise unless the server answers ``SELECT 1`` with a single 1."""

    def check_health(self, port: int, database: Optional[str] = None) -> HealthStatus:
        """Probe once and report the outcome."""


class PostgresHealthChecker:
    """Probes a server with a TCP connect followed by ``SELECT 1``."""

    def __init__(
        self,
        logger: Logger,
        settings: Optional[ServerSettings] = None,
        timeouts: Optional[TimeoutConfig] = None,
        connect_options: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._logger = logger
        self._settings = settings or ServerSettings()
        self._timeouts = timeouts or TimeoutConfig()
        self._connect_options = dict(connect_options or {})

    def probe(self, port: int, database: Optional[str] = None) -> None:
        timeout = self._timeouts.readiness_connect_timeout
        # Cheap check first so a server that is not listening yet fails fast
        with socket.create_connection((self._settings.host, port), timeout=timeout):
            pass

        with psycopg.connect(
            host=self._settings.host,
            port=port,
            user=self._settings.superuser,
            dbname=database or self._settings.admin_database,
            connect_timeout=max(1, math.ceil(timeout)),
            autocommit=True,
            **self._connect_options,
        ) as conn:
            rows = conn.execute("SELECT 1").fetchall()
        if len(rows) != 1 or rows[0][0] != 1:
            raise HealthCheckError(f"Unexpected readiness result: {rows!r}")

    def check_health(self, port: int, database: Optional[str] = None) -> HealthStatus:
        start_time = time.monotonic()
        try:
            self.probe(port, database)
        except PROBE_ERRORS as e:
            self._logger.debug("Health check on port %s failed: %s", port, e)
            return HealthStatus(
                is_healthy=False,
                response_time=time.monotonic() - start_time,
                error_message=str(e),
                details={"error_type": type(e).__name__},
            )
        return HealthStatus(is_healthy=True, response_time=time.monotonic() - start_time)
