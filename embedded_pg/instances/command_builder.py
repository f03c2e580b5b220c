"""Command lines for initdb, postgres and pg_ctl."""

import tempfile
from typing import List, Mapping
from pathlib import Path

from ..core.log import Logger


class PostgresCommandBuilder:
    """Builds command lines against one installation directory."""

    def __init__(self, install_dir: Path, logger: Logger, superuser: str = "postgres") -> None:
        self.install_dir = Path(install_dir)
        self._logger = logger
        self._superuser = superuser

    def binary(self, name: str) -> str:
        return str(self.install_dir / "bin" / name)

    def initdb(self, data_dir: Path, locale_config: Mapping[str, str]) -> List[str]:
        command = [
            self.binary("initdb"),
            "-A",
            "trust",
            "-U",
            self._superuser,
            "-D",
            str(data_dir),
            "-E",
            "UTF-8",
        ]
        for key, value in locale_config.items():
            command.append(f"--{key}")
            if value:
                command.append(str(value))
        self._logger.debug("initdb command: %s", " ".join(command))
        return command

    def postgres(
        self, data_dir: Path, port: int, server_config: Mapping[str, str]
    ) -> List[str]:
        """Server command; fsync is off since the data is disposable."""
        command = [
            self.binary("postgres"),
            "-D",
            str(data_dir),
            "-p",
            str(port),
            "-F",
        ]
        if "unix_socket_directories" not in server_config:
            command.extend(["-k", tempfile.gettempdir()])
        for key, value in server_config.items():
            command.extend(["-c", f"{key}={value}"])
        self._logger.debug("postgres command: %s", " ".join(command))
        return command

    def pg_ctl_stop(self, data_dir: Path, mode: str = "fast", wait_seconds: int = 5) -> List[str]:
        return [
            self.binary("pg_ctl"),
            "-D",
            str(data_dir),
            "stop",
            "-m",
            mode,
            "-t",
            str(wait_seconds),
            "-w",
        ]
