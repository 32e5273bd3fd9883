"""Configuration surface for imapbox.

What:
  Re-export the server configuration model and its loader helpers.

Interfaces:
  ``ServerConfig``, ``ConfigLoadError``, ``load_config``, ``get_config``,
  ``reset_config``, ``parse_config``.
"""

from .loader import ConfigLoadError, get_config, load_config, parse_config, reset_config
from .schema import ServerConfig

__all__ = [
    "ServerConfig",
    "ConfigLoadError",
    "load_config",
    "get_config",
    "reset_config",
    "parse_config",
]
