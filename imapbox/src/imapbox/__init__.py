"""
Module: imapbox.__init__

What:
  Package root for imapbox, a mailbox-centric layer over ``imapclient``:
  folder names in UTF-8, typed search expressions, validated sequence sets,
  flattened thread trees and lazy message handles.

Why:
  Keeping the public surface in one place lets scripts write
  ``from imapbox import connect`` while the subpackages stay free to evolve.

Interfaces:
  - config: Server configuration schema and YAML loader.
  - imap: Connection, Mailbox, Message and the protocol helpers.
  - utils: Structured JSON logging.
  - exceptions: The error hierarchy rooted at ``ImapboxError``.
"""

from .exceptions import ImapboxError
from .imap import Connection, Mailbox, Message, connect

__version__ = "0.1.0"

__all__ = [
    "config",
    "exceptions",
    "imap",
    "utils",
    "connect",
    "Connection",
    "Mailbox",
    "Message",
    "ImapboxError",
]
