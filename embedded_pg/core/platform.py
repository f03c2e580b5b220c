"""Operating system, architecture and Linux distribution detection.

Names are normalized the same way bundle artifacts are named:
``postgres-<os>-<arch>[-<distribution>].txz``.
"""

import platform as _platform
import re
from typing import Optional, List, Tuple, Pattern

from .errors import UnsupportedArchitectureError, UnsupportedPlatformError
from .log import get_logger

logger = get_logger(__name__)

# Ordered; first match wins. Patterns apply to the lowercased name with
# every non-alphanumeric character removed.
_ARCH_ALIASES: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"^(x8664|amd64|ia32e|em64t|x64)$"), "x86_64"),
    (re.compile(r"^(x8632|x86|i[3-6]86|ia32|x32)$"), "x86_32"),
    (re.compile(r"^(ia64w?|itanium64)$"), "itanium_64"),
    (re.compile(r"^ia64n$"), "itanium_32"),
    (re.compile(r"^(sparcv9|sparc64)$"), "sparc_64"),
    (re.compile(r"^(sparc|sparc32)$"), "sparc_32"),
    (re.compile(r"^(aarch64|armv8|arm64).*$"), "arm_64"),
    (re.compile(r"^(arm|arm32).*$"), "arm_32"),
    (re.compile(r"^(mips|mips32)$"), "mips_32"),
    (re.compile(r"^(mipsel|mips32el)$"), "mipsel_32"),
    (re.compile(r"^mips64$"), "mips_64"),
    (re.compile(r"^mips64el$"), "mipsel_64"),
    (re.compile(r"^(ppc|ppc32)$"), "ppc_32"),
    (re.compile(r"^(ppcle|ppc32le)$"), "ppcle_32"),
    (re.compile(r"^ppc64$"), "ppc_64"),
    (re.compile(r"^ppc64le$"), "ppcle_64"),
    (re.compile(r"^s390$"), "s390_32"),
    (re.compile(r"^s390x$"), "s390_64"),
]

_OS_ALIASES = {
    "linux": "linux",
    "darwin": "darwin",
    "macos": "darwin",
    "macosx": "darwin",
    "osx": "darwin",
    "windows": "windows",
    "win32": "windows",
    "cygwin": "windows",
}


def _strip(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", value.lower())


def normalize_architecture(name: Optional[str]) -> str:
    """Map an architecture name onto its canonical bundle spelling.

    Raises:
        UnsupportedArchitectureError: name is blank or unrecognized
    """
    if name is None or not name.strip():
        raise UnsupportedArchitectureError("No architecture detected", architecture=name)

    stripped = _strip(name)
    for pattern, canonical in _ARCH_ALIASES:
        if pattern.match(stripped):
            return canonical

    raise UnsupportedArchitectureError(
        f"Unsupported architecture: {name}", architecture=name
    )


def normalize_operating_system(name: Optional[str]) -> str:
    """Map an OS name (``platform.system()`` style) onto its bundle spelling."""
    if name is None or not name.strip():
        raise UnsupportedPlatformError("No operating system detected")

    stripped = _strip(name)
    if stripped in _OS_ALIASES:
        return _OS_ALIASES[stripped]
    if stripped.startswith("windows"):
        return "windows"
    raise UnsupportedPlatformError(f"Unsupported operating system: {name}")


def normalize_distribution(name: Optional[str]) -> Optional[str]:
    """Apply the distribution aliases bundles are published under."""
    if name is None or not name.strip():
        return None
    name = name.strip()
    if name.startswith("Debian"):
        return "Debian"
    if name == "openSUSE project":
        return "openSUSE"
    return name


def detect_operating_system() -> str:
    return normalize_operating_system(_platform.system())


def detect_architecture() -> str:
    return normalize_architecture(_platform.machine())


def detect_distribution() -> Optional[str]:
    """Return the Linux distribution name, or None when unknown or not on Linux."""
    if _platform.system() != "Linux":
        return None
    try:
        release = _platform.freedesktop_os_release()
    except OSError as e:
        logger.debug("Could not read os-release: %s", e)
        return None
    return normalize_distribution(release.get("NAME"))
