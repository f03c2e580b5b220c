"""Tests for port allocation."""

import socket
import threading

import pytest

from embedded_pg.core.errors import NetworkError, PortInUseError
from embedded_pg.utils.ports import PortManager


class TestPortManager:
    """Test PortManager basic functionality."""

    def test_allocate_port(self) -> None:
        pm = PortManager()
        port = pm.allocate_port()
        assert 0 < port < 65536
        assert pm.is_allocated(port)

    def test_release_port(self) -> None:
        pm = PortManager()
        port = pm.allocate_port()
        pm.release_port(port)
        assert not pm.is_allocated(port)

    def test_preferred_port_claimed_exactly(self) -> None:
        pm = PortManager()
        free = PortManager().allocate_port()
        assert pm.allocate_port(preferred=free) == free

    def test_preferred_port_claimed_twice(self) -> None:
        pm = PortManager()
        port = pm.allocate_port()
        with pytest.raises(PortInUseError) as exc_info:
            pm.allocate_port(preferred=port)
        assert exc_info.value.port == port

    def test_preferred_port_bound_elsewhere(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]
            with pytest.raises(PortInUseError):
                PortManager().allocate_port(preferred=port)

    def test_no_duplicate_allocation(self) -> None:
        pm = PortManager()
        ports = {pm.allocate_port() for _ in range(20)}
        assert len(ports) == 20

    def test_thread_safety(self) -> None:
        pm = PortManager()
        ports = []
        errors = []

        def allocate() -> None:
            try:
                ports.append(pm.allocate_port())
            except NetworkError as e:
                errors.append(e)

        threads = [threading.Thread(target=allocate) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(set(ports)) == len(ports)

    def test_exhaustion(self, monkeypatch: pytest.MonkeyPatch) -> None:
        pm = PortManager(max_attempts=3)
        pm._allocated.add(40000)
        monkeypatch.setattr(pm, "_ephemeral_port", lambda: 40000)
        with pytest.raises(NetworkError, match="after 3 attempts"):
            pm.allocate_port()
