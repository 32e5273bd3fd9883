"""Locate, parse, and cache the imapbox server configuration.

What:
  Provide helpers to find ``imapbox.yaml``, parse it with PyYAML, validate it
  into a :class:`~imapbox.config.schema.ServerConfig`, and memoise the result.

Why:
  Configuration lives outside the package and can be malformed. Centralising
  discovery and validation gives every entry point the same precedence rules
  and the same error messages, with the offending path in them.

How:
  Resolve candidate locations from an explicit argument, the
  ``IMAPBOX_CONFIG_PATH`` environment variable, and well-known defaults. Parse
  the first existing file with ``yaml.safe_load``, let ``IMAPBOX_PASSWORD``
  override the stored password, and validate with Pydantic.

Interfaces:
  :func:`load_config`, :func:`get_config`, :func:`reset_config`,
  :func:`parse_config`, :class:`ConfigLoadError`.

Invariants:
  - Payloads pass strict Pydantic validation (``extra="forbid"``) before they
    are returned.
  - The cache honours explicit ``reload`` requests and the precedence order of
    candidate paths.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import ServerConfig


class ConfigLoadError(Exception):
    """Configuration could not be located, parsed, or validated."""


_CONFIG_ENV = "IMAPBOX_CONFIG_PATH"
_PASSWORD_ENV = "IMAPBOX_PASSWORD"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("imapbox.yaml"),
    Path("~/.config/imapbox/config.yaml"),
)
_CONFIG_CACHE: Optional[Tuple[Path, ServerConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    Explicit argument first, then ``IMAPBOX_CONFIG_PATH``, then the defaults.
    Paths are expanded and de-duplicated while preserving precedence.
    """

    seen: set[Path] = set()
    candidates = []
    if path is not None:
        candidates.append(path)
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.extend(_DEFAULT_LOCATIONS)
    for candidate in candidates:
        candidate = candidate.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def parse_config(text: str, source: str = "<string>") -> ServerConfig:
    """Parse YAML ``text`` into a validated :class:`ServerConfig`.

    Args:
      text: Raw YAML document.
      source: Label used in error messages (usually the file path).

    Raises:
      ConfigLoadError: If the YAML is invalid, is not a mapping, or fails
        schema validation.
    """

    try:
        payload: Any = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"{source} must contain a mapping at the top-level")
    env_password = os.environ.get(_PASSWORD_ENV)
    if env_password:
        payload["password"] = env_password
    try:
        return ServerConfig.model_validate(payload)
    except _PydanticValidationError as exc:
        raise ConfigLoadError(f"Invalid configuration in {source}: {exc}") from exc


def _load_from_path(path: Path) -> ServerConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise ConfigLoadError(f"Unable to read configuration file {path}: {exc}") from exc
    return parse_config(text, str(path))


def load_config(path: Optional[Path | str] = None, *, reload: bool = False) -> ServerConfig:
    """Resolve, parse, and cache the server configuration.

    Args:
      path: Optional explicit location of the YAML file.
      reload: When ``True`` bypass the cache.

    Returns:
      The validated configuration.

    Raises:
      ConfigLoadError: If no candidate exists or the first one found is
        invalid.
    """

    global _CONFIG_CACHE

    requested = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _CONFIG_CACHE is not None:
        cached_path, cached_config = _CONFIG_CACHE
        if requested is None or cached_path == requested:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_from_path(candidate)
        _CONFIG_CACHE = (candidate, config)
        return config

    listing = ", ".join(searched) if searched else "<none>"
    raise ConfigLoadError(f"Unable to locate imapbox configuration (searched: {listing})")


def get_config() -> ServerConfig:
    """Return the cached configuration, loading it on demand."""

    return load_config()


def reset_config() -> None:
    """Forget the cached configuration so the next load re-reads disk."""

    global _CONFIG_CACHE
    _CONFIG_CACHE = None
