"""Tests for domain value objects."""

import pytest

from embedded_pg.core.value_objects import ArchiveDigest, InstanceId


class TestInstanceId:
    """Test InstanceId validation."""

    def test_valid(self) -> None:
        assert str(InstanceId("pg_1-a")) == "pg_1-a"

    @pytest.mark.parametrize("value", ["", "   ", "bad id", "a/b"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            InstanceId(value)

    def test_generate_unique(self) -> None:
        assert InstanceId.generate() != InstanceId.generate()

    def test_hashable(self) -> None:
        assert len({InstanceId("a"), InstanceId("a")}) == 1


class TestArchiveDigest:
    """Test ArchiveDigest validation and naming."""

    def test_directory_name(self) -> None:
        digest = ArchiveDigest("0123456789abcdef0123456789abcdef")
        assert digest.directory_name == "PG-0123456789abcdef0123456789abcdef"

    @pytest.mark.parametrize("value", ["", "xyz", "0123456789ABCDEF0123456789ABCDEF"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            ArchiveDigest(value)
