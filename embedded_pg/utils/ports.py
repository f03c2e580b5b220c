"""Thread-safe port allocation for embedded servers."""

import socket
import threading
from typing import Optional, Protocol, Set

from ..core.errors import NetworkError, PortInUseError
from ..core.log import get_logger

logger = get_logger(__name__)


class PortAllocator(Protocol):
    """Protocol for port allocation to enable dependency injection."""

    def allocate_port(self, preferred: Optional[int] = None) -> int:
        """Allocate an available port."""

    def release_port(self, port: int) -> None:
        """Release a previously allocated port."""


class PortManager:
    """Hands out ports that are free on the loopback interface.

    A claimed port stays reserved inside this process until released, so two
    servers started from the same process never race for one port.
    """

    def __init__(self, host: str = "127.0.0.1", max_attempts: int = 20) -> None:
        """Initialize port manager.

        Args:
            host: Interface used for the availability probe
            max_attempts: Ephemeral ports tried before giving up
        """
        self.host = host
        self.max_attempts = max_attempts
        self._allocated: Set[int] = set()
        self._lock = threading.Lock()

    def allocate_port(self, preferred: Optional[int] = None) -> int:
        """Allocate a port.

        A preferred port is claimed exactly or not at all. Without one, the
        kernel picks a free ephemeral port.

        Raises:
            PortInUseError: preferred port is taken or already claimed
            NetworkError: no free port found
        """
        with self._lock:
            if preferred:
                if not self._is_available(preferred):
                    raise PortInUseError(
                        f"Port {preferred} is already in use", port=preferred
                    )
                self._allocated.add(preferred)
                logger.debug("Allocated requested port %s", preferred)
                return preferred

            for _ in range(self.max_attempts):
                port = self._ephemeral_port()
                if port not in self._allocated:
                    self._allocated.add(port)
                    logger.debug("Allocated ephemeral port %s", port)
                    return port

            raise NetworkError(
                f"No free port found after {self.max_attempts} attempts"
            )

    def release_port(self, port: int) -> None:
        """Release a previously allocated port."""
        with self._lock:
            self._allocated.discard(port)
            logger.debug("Released port %s", port)

    def is_allocated(self, port: int) -> bool:
        with self._lock:
            return port in self._allocated

    def _ephemeral_port(self) -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((self.host, 0))
            return sock.getsockname()[1]

    def _is_available(self, port: int) -> bool:
        """Check if port is neither claimed here nor bound by anyone else."""
        if port in self._allocated:
            return False

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind((self.host, port))
                return True
        except OSError:
            return False
