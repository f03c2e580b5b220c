"""Error hierarchy for embedded PostgreSQL provisioning."""

from typing import Optional, Dict, Any


class EmbeddedPgError(Exception):
    """Base exception for all embedded_pg errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration and Setup Errors
class ConfigurationError(EmbeddedPgError):
    """Error in embedded_pg configuration."""


class UnsupportedPlatformError(EmbeddedPgError):
    """Operating system or architecture cannot be mapped to a binary bundle."""


class UnsupportedArchitectureError(UnsupportedPlatformError):
    """Architecture name is blank or not in the alias table."""

    def __init__(self, message: str, architecture: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.architecture = architecture


# Binary Resolution Errors
class BinaryResolutionError(EmbeddedPgError):
    """Base class for binary bundle lookup errors."""


class BinaryNotFoundError(BinaryResolutionError):
    """No bundle matches the requested platform."""


class DuplicateBinaryError(BinaryResolutionError):
    """More than one bundle matches within the same lookup tier."""

    def __init__(self, message: str, candidates: Optional[list] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.candidates = candidates or []


# Extraction Errors
class ExtractionError(EmbeddedPgError):
    """Archive could not be unpacked."""


class ExtractionTimeoutError(ExtractionError):
    """Another extractor never published the completion marker."""

    def __init__(self, message: str, timeout: float,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout


# Filesystem and Locking Errors
class FilesystemError(EmbeddedPgError):
    """Filesystem operation error."""


class PathError(FilesystemError):
    """Path resolution or validation error."""


class LockError(FilesystemError):
    """Advisory lock could not be taken."""


class OverlappingLockError(LockError):
    """Lock is already held by this process."""


# Process Management Errors
class ProcessError(EmbeddedPgError):
    """Base class for process-related errors."""

    def __init__(self, message: str, returncode: Optional[int] = None,
                 output: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.returncode = returncode
        self.output = output


class ProcessStartupError(ProcessError):
    """Error during process startup."""


class ProcessTimeoutError(ProcessError):
    """Process operation timed out."""

    def __init__(self, message: str, timeout: float,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)
        self.timeout = timeout


# Server Errors
class ServerError(EmbeddedPgError):
    """Base class for PostgreSQL server errors."""


class InitializationError(ServerError):
    """initdb failed for the data directory."""


class AlreadyRunningError(ServerError):
    """Data directory is locked by another live server."""


class ServerStartupError(ServerError):
    """Error starting the PostgreSQL server."""


class StartupTimeoutError(ServerStartupError):
    """Server did not answer queries within the startup timeout."""

    def __init__(self, message: str, timeout: float,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout


class HealthCheckError(ServerError):
    """Readiness query returned something other than a single 1."""

    def __init__(self, message: str, response_time: Optional[float] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.response_time = response_time


class ServerStateError(ServerError):
    """Operation is not valid in the server's current state."""


class NetworkError(EmbeddedPgError):
    """Network-related error."""


class PortInUseError(NetworkError):
    """Requested port is taken or already claimed."""

    def __init__(self, message: str, port: int,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.port = port


# Provisioning Errors
class ProvisioningError(EmbeddedPgError):
    """Base class for database provisioning errors."""


class PreparationError(ProvisioningError):
    """Preparer failed against the template database."""


class DatabaseCreationError(ProvisioningError):
    """CREATE DATABASE failed for a pipeline slot."""

    def __init__(self, message: str, database_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.database_name = database_name


class PipelineClosedError(ProvisioningError):
    """Pipeline was shut down or interrupted while a caller was waiting."""


class ProvisioningTimeoutError(ProvisioningError):
    """No database became available within the caller's timeout."""

    def __init__(self, message: str, timeout: float,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout
