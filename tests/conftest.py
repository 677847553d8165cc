"""
Pytest configuration and fixtures for commandrunner tests.
Resets the process-wide configuration, logging and debug sink between tests.
"""

import os
import sys
from typing import Generator, List

import pytest

from commandrunner.core.config import reset_config
from commandrunner.core.debug_log import reset_default_debug_log
from commandrunner.core.log import clear_log_context, shutdown_logging


@pytest.fixture(autouse=True)
def cleanup_global_state(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against default configuration and no debug sink."""
    for key in list(os.environ):
        if key.startswith("COMMANDRUNNER_"):
            monkeypatch.delenv(key)
    reset_config()
    reset_default_debug_log()

    yield

    reset_config()
    reset_default_debug_log()
    shutdown_logging()
    clear_log_context()


def python_command(code: str) -> List[str]:
    """Argument vector running ``code`` in the current interpreter."""
    return [sys.executable, "-c", code]


@pytest.fixture
def python_cmd():
    """Provide the python_command helper to tests."""
    return python_command
