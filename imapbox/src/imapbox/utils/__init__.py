"""Shared helpers for imapbox.

What:
  Re-export the structured logging helpers used across the package.

Why:
  Call sites import ``from imapbox.utils import get_logger`` without depending
  on the module layout.
"""

from .logging import JsonLogger, configure, get_logger

__all__ = ["JsonLogger", "configure", "get_logger"]
