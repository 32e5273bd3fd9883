"""Facade for the IMAP layer.

What:
  Surface the account :class:`Connection`, the :class:`Mailbox` orchestrator,
  lazy :class:`Message` handles and the value types callers pass around.

Why:
  Call sites import from ``imapbox.imap`` instead of individual modules, so
  the internal split (codec, search, sequence, thread, resource) can change
  without touching them.

Interfaces:
  ``connect``, ``Connection``, ``Mailbox``, ``MessageIterator``, ``Message``,
  ``MailboxName``, ``SearchExpression``, ``SequenceSet``, ``MailboxStatus``,
  ``StatusFlag``, ``MailboxAttribute``, ``SortKey``, ``ThreadNode``,
  ``ResourceHandle``.
"""

from . import search
from .connection import Connection, connect
from .mailbox import Mailbox, MessageIterator
from .message import Message
from .names import MailboxName
from .resource import ResourceHandle
from .search import SearchExpression, build_search
from .sequence import SequenceSet
from .status import MailboxAttribute, MailboxStatus, SortKey, StatusFlag
from .thread import ThreadNode

__all__ = [
    "connect",
    "Connection",
    "Mailbox",
    "MessageIterator",
    "Message",
    "MailboxName",
    "ResourceHandle",
    "SearchExpression",
    "SequenceSet",
    "MailboxStatus",
    "StatusFlag",
    "MailboxAttribute",
    "SortKey",
    "ThreadNode",
    "build_search",
    "search",
]
