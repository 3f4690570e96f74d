"""Fixtures for command line tool tests."""

import logging
from collections.abc import Generator

import pytest

_LOGGER = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Restore root logger handlers changed by `--log-level`."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
