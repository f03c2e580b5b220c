"""Tests for deadlines and bounded polling."""

from unittest.mock import Mock

import pytest

from embedded_pg.core.time import Deadline, poll_until


class TestDeadline:
    """Test Deadline arithmetic."""

    def test_remaining_never_negative(self) -> None:
        deadline = Deadline(0.0)
        assert deadline.remaining() == 0.0
        assert deadline.is_expired()

    def test_fresh_deadline(self) -> None:
        deadline = Deadline(60.0)
        assert not deadline.is_expired()
        assert 0 < deadline.remaining() <= 60.0


class TestPollUntil:
    """Test poll_until bounds and error handling."""

    def test_requires_a_bound(self) -> None:
        with pytest.raises(ValueError):
            poll_until(lambda: True)

    def test_succeeds_on_first_attempt(self) -> None:
        sleep = Mock()
        outcome = poll_until(lambda: "ready", max_attempts=3, sleep=sleep)
        assert outcome.satisfied
        assert outcome.value == "ready"
        assert outcome.attempts == 1
        sleep.assert_not_called()

    def test_retries_listed_errors(self) -> None:
        results = iter([ConnectionRefusedError("no"), ConnectionRefusedError("still no"), 1])

        def probe():
            result = next(results)
            if isinstance(result, Exception):
                raise result
            return result

        outcome = poll_until(probe, max_attempts=5, retry_on=(OSError,), sleep=Mock())
        assert outcome.satisfied
        assert outcome.attempts == 3
        assert str(outcome.last_error) == "still no"

    def test_other_errors_propagate(self) -> None:
        def probe():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            poll_until(probe, max_attempts=5, retry_on=(OSError,), sleep=Mock())

    def test_gives_up_after_attempts(self) -> None:
        sleep = Mock()
        outcome = poll_until(lambda: False, max_attempts=4, interval=1.0, sleep=sleep)
        assert not outcome.satisfied
        assert outcome.attempts == 4
        assert sleep.call_count == 3

    def test_gives_up_after_timeout(self) -> None:
        outcome = poll_until(lambda: False, timeout=0.05, interval=0.01)
        assert not outcome.satisfied
        assert outcome.elapsed >= 0.05

    def test_abort_raises(self) -> None:
        probe = Mock(return_value=False)
        with pytest.raises(RuntimeError, match="died"):
            poll_until(probe, timeout=5, abort=lambda: RuntimeError("died"))
        probe.assert_not_called()

    def test_custom_is_done(self) -> None:
        values = iter([1, 2, 3])
        outcome = poll_until(
            lambda: next(values), max_attempts=5, is_done=lambda v: v >= 3, sleep=Mock()
        )
        assert outcome.value == 3
