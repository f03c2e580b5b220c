"""Path helpers shared by binary extraction and data directory management."""

import os
import shutil
import time
from pathlib import Path
from typing import Optional

from ..core.errors import FilesystemError, PathError
from ..core.log import get_logger

logger = get_logger(__name__)


def read_text(path: Path, encoding: str = "utf-8") -> str:
    """Contents of a text file, with OS errors mapped to FilesystemError."""
    path = Path(path)
    try:
        return path.read_text(encoding=encoding)
    except FileNotFoundError as e:
        raise PathError(f"No such file: {path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise FilesystemError(f"Cannot read {path}: {e}") from e


def ensure_dir(path: Path) -> Path:
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Cannot create directory {path}: {e}") from e
    return path


def safe_remove(path: Path) -> bool:
    """Delete a file, symlink or directory tree.

    A symlink is unlinked, never followed. Failures are logged.

    Returns:
        True if something was removed
    """
    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            return False
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        return False
    return True


def file_age(path: Path, now: Optional[float] = None) -> float:
    """Seconds since path was last modified."""
    if now is None:
        now = time.time()
    return now - Path(path).stat().st_mtime


def make_executable(path: Path) -> None:
    # r-- becomes r-x for each of user, group and other
    mode = path.stat().st_mode
    path.chmod(mode | ((mode & 0o444) >> 2))


def is_within(base: Path, candidate: Path) -> bool:
    """True if candidate is base or below it, after normalising ``..``."""
    root = os.path.abspath(base)
    target = os.path.abspath(candidate)
    return target == root or target.startswith(root.rstrip(os.sep) + os.sep)
