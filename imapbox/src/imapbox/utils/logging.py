"""Structured JSON logging for imapbox components.

What:
  Offer a tiny facade over Python streams so every imapbox component can emit
  JSON log lines with consistent fields, a severity threshold, and automatic
  removal of credentials and message content.

Why:
  IMAP sessions carry passwords and raw message bytes. Logging them by
  accident is easy when a command fails and the arguments are dumped for
  debugging; a central redaction pass makes that impossible. A single-line
  JSON layout keeps logs greppable and trivially machine-parsed.

How:
  Provide a :class:`JsonLogger` dataclass that accepts a target stream and
  enforces uppercase severity levels. ``extra`` dictionaries are scrubbed via a
  recursive redaction helper before being serialised with ``json.dump``.
  :func:`configure` sets the process-wide threshold and default stream used by
  :func:`get_logger`.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :func:`configure`.

Invariants & Safety:
  - Every emitted payload includes an ISO8601 timestamp, severity, and
    component name.
  - Known sensitive keys (``password``, ``content``, ``body``, ``subject``) are
    replaced with ``[redacted]`` even inside nested dictionaries.
  - Entries below the configured threshold are dropped before serialisation.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


REDACTED = "[redacted]"
LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}
_SENSITIVE_KEYS = frozenset({"password", "content", "body", "subject"})

_threshold = LEVELS["WARN"]
_default_stream: Optional[TextIO] = None
_KEEP: Any = object()


def configure(level: str | None = None, stream: Optional[TextIO] = _KEEP) -> None:
    """Set the minimum severity and default stream for new loggers.

    Args:
      level: One of ``DEBUG``, ``INFO``, ``WARN`` or ``ERROR`` (case
        insensitive). ``None`` keeps the current threshold.
      stream: Destination for loggers created without an explicit stream.
        ``None`` restores ``stderr``; omit it to keep the current stream.

    Raises:
      ValueError: If ``level`` is not a known severity.
    """

    global _threshold, _default_stream
    if level is not None:
        key = level.upper()
        if key not in LEVELS:
            raise ValueError(f"Unknown log level {level!r}")
        _threshold = LEVELS[key]
    if stream is not _KEEP:
        _default_stream = stream


def _current_stream() -> TextIO:
    return _default_stream if _default_stream is not None else sys.stderr


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits single-line JSON log entries that include timestamps, severity, a
      component tag, and optional supplemental fields.

    Why:
      Centralising structured logging avoids duplicating the redaction logic and
      guarantees a uniform schema for tooling and test assertions.

    How:
      Stores an optional destination stream and the component label, then
      exposes :meth:`debug`, :meth:`info`, :meth:`warning` and :meth:`error`
      which merge a canonical payload with redacted extras. When ``stream`` is
      ``None`` the module-level default chosen by :func:`configure` is used at
      write time.
    """

    stream: Optional[TextIO] = None
    component: str = "imapbox"
    extra_fields: Dict[str, Any] = field(default_factory=dict)

    def enabled(self, level: str) -> bool:
        return LEVELS.get(level.upper(), LEVELS["ERROR"]) >= _threshold

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        Args:
          level: Severity (``"debug"``, ``"info"``, ``"warn"`` or ``"error"``).
          message: Core log message.
          extra: Optional context dictionary that will be redacted recursively.
        """

        if not self.enabled(level):
            return
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if self.extra_fields:
            payload.update(self._redact(self.extra_fields))
        if extra:
            payload.update(self._redact(extra))
        stream = self.stream if self.stream is not None else _current_stream()
        json.dump(payload, stream, separators=(",", ":"), default=str)
        stream.write("\n")
        stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def bind(self, **fields: Any) -> "JsonLogger":
        """Return a logger that adds ``fields`` to every entry."""

        merged = dict(self.extra_fields)
        merged.update(fields)
        return JsonLogger(stream=self.stream, component=self.component, extra_fields=merged)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive values masked.

        Walks the dictionary, applying the sentinel to known keys and recursing
        into nested dictionaries so structure is preserved for parsing.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def get_logger(component: str) -> JsonLogger:
    """Construct a :class:`JsonLogger` for the requested component.

    Call sites should not instantiate :class:`JsonLogger` directly so shared
    invariants (redaction keys, default stream, threshold) evolve centrally.
    """

    return JsonLogger(component=component)
