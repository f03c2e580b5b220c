"""Core type definitions for embedded_pg."""

import tempfile
from typing import Dict, List, Optional, Any
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from .enums import OutputMode


DEFAULT_SERVER_CONFIG: Dict[str, str] = {
    "timezone": "UTC",
    "synchronous_commit": "off",
    "max_connections": "300",
}


class TimeoutConfig(BaseModel):
    """Centralized timeout and polling configuration."""

    # Server lifecycle timeouts
    server_startup: float = 10.0
    readiness_poll_interval: float = 0.1
    readiness_connect_timeout: float = 0.5
    pg_ctl_stop_wait: int = 5
    initdb: float = 120.0
    stop_command: float = 30.0

    # Process management timeouts
    process_graceful_stop: float = 5.0

    # Extraction wait when another process holds the unpack lock
    extraction_wait_attempts: int = 60
    extraction_poll_interval: float = 1.0

    # Stale data directories younger than this are left alone
    reclaim_min_age: float = 600.0


class ServerSettings(BaseModel):
    """Per-server defaults applied to every embedded instance."""

    superuser: str = "postgres"
    admin_database: str = "postgres"
    template_database: str = "template1"
    host: str = "localhost"
    stop_mode: str = "fast"
    server_config: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_SERVER_CONFIG)
    )
    output_mode: OutputMode = OutputMode.LOG


class EmbeddedPgConfig(BaseModel):
    """Main embedded_pg configuration."""

    working_dir: Optional[Path] = None
    binary_path: List[Path] = Field(default_factory=list)
    no_cleanup: bool = False
    log_level: str = "INFO"

    # Provisioning pipeline
    database_name_length: int = 12

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    server: ServerSettings = Field(default_factory=ServerSettings)

    @model_validator(mode="after")
    def validate_config(self) -> "EmbeddedPgConfig":
        """Validate configuration without side effects."""
        from .errors import ConfigurationError

        if self.timeouts.server_startup < 0:  # pylint: disable=no-member
            raise ConfigurationError("Startup timeout must not be negative")
        if self.timeouts.extraction_wait_attempts < 1:  # pylint: disable=no-member
            raise ConfigurationError("Extraction wait needs at least one attempt")
        if self.database_name_length < 1:
            raise ConfigurationError("Database name length must be positive")
        return self

    def effective_working_dir(self) -> Path:
        """Directory holding binary bundles and data directories."""
        if self.working_dir is not None:
            return Path(self.working_dir)
        return Path(tempfile.gettempdir()) / "embedded-pg"


# Health and status types
class HealthStatus(BaseModel):
    """Server readiness probe result."""

    is_healthy: bool
    response_time: float
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

