"""Domain primitives for instance and bundle identification."""

import re
import uuid
from dataclasses import dataclass

_HEX_DIGEST = re.compile(r"^[0-9a-f]{32,128}$")


@dataclass(frozen=True)
class InstanceId:
    """Validated server instance identifier. Hashable for use as dictionary key."""

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("InstanceId cannot be empty")

        # Allow alphanumeric characters, underscores, and hyphens
        normalized = self.value.replace("_", "").replace("-", "")
        if not normalized.isalnum():
            raise ValueError(f"InstanceId must be alphanumeric with _ or -: {self.value}")

    @classmethod
    def generate(cls) -> "InstanceId":
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ArchiveDigest:
    """Hex digest of a binary bundle; names its extraction directory."""

    value: str

    def __post_init__(self) -> None:
        if not _HEX_DIGEST.match(self.value):
            raise ValueError(f"ArchiveDigest must be lowercase hex: {self.value!r}")

    @property
    def directory_name(self) -> str:
        return f"PG-{self.value}"

    def __str__(self) -> str:
        return self.value
