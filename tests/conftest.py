"""Pytest configuration shared by every suite.

What:
  Establish project import paths and keep process-wide state (configuration
  cache, logging threshold and stream) deterministic between tests.

Why:
  The tests import the ``imapbox`` package from the source tree rather than an
  installed wheel, so ``imapbox/src`` is prepended to ``sys.path``. The config
  cache and logger settings are module globals; without resets tests could
  depend on execution order.

How:
  Inject the source directory at import time and define an autouse fixture
  that clears the imapbox environment variables and resets both caches before
  and after each test.

Interfaces:
  :func:`clean_state` (pytest fixture).
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "imapbox" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from imapbox.config.loader import reset_config
from imapbox.utils.logging import configure


@pytest.fixture(autouse=True)
def clean_state(monkeypatch: pytest.MonkeyPatch):
    """Reset configuration and logging globals around every test."""

    monkeypatch.delenv("IMAPBOX_CONFIG_PATH", raising=False)
    monkeypatch.delenv("IMAPBOX_PASSWORD", raising=False)
    reset_config()
    configure(level="WARN", stream=None)
    try:
        yield
    finally:
        reset_config()
        configure(level="WARN", stream=None)
