"""
Pytest configuration and fixtures for framework unit tests.
Resets process-wide state so tests never leak configuration or contexts.
"""

from typing import Generator

import pytest


@pytest.fixture(autouse=True)
def cleanup_logging() -> Generator[None, None, None]:
    """Drop handlers a test installed through configure_logging()."""
    yield

    from embedded_pg.core.log import reset_logging

    reset_logging()


@pytest.fixture(autouse=True)
def cleanup_global_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Isolate tests from EMBEDDED_PG_* variables and the global config and context."""
    import os

    for key in list(os.environ):
        if key.startswith("EMBEDDED_PG_"):
            monkeypatch.delenv(key)

    yield

    from embedded_pg.core.config import reset_config
    from embedded_pg.core.context import reset_default_context

    reset_config()
    reset_default_context()
