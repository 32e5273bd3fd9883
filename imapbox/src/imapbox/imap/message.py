"""Lazy handle for a single message inside a mailbox.

What:
  Represent one message by ``(mailbox, uid)`` and fetch its metadata (flags,
  internal date, size, headers) only when a property is first read.

Why:
  Listing a mailbox can return thousands of ids; fetching every envelope up
  front would turn a cheap SEARCH into a slow bulk download. Deferring the
  fetch also lets :meth:`~imapbox.imap.mailbox.Mailbox.get_message` hand out a
  handle without a round trip, reporting a missing UID only when it matters.

How:
  The first property access issues one ``FETCH`` of :data:`FETCH_ITEMS` and
  caches the reply; mutators delegate to the owning mailbox's bulk operations
  with a single id and drop the cache so the next read sees the new state.
  An expunge through the owning mailbox also invalidates every handle it
  gave out.

Interfaces:
  :class:`Message`, :data:`FETCH_ITEMS`.

Invariants & Safety:
  - Headers are fetched with ``BODY.PEEK`` so reading never sets ``\\Seen``.
  - A UID the server does not know raises
    :class:`~imapbox.exceptions.MessageDoesNotExistException` on every
    access, never a partially populated object.
"""
from __future__ import annotations

from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Dict, Optional, Tuple, Union

from .status import format_internal_date

if TYPE_CHECKING:  # pragma: no cover
    from .mailbox import Mailbox

FETCH_ITEMS = ("UID", "FLAGS", "INTERNALDATE", "RFC822.SIZE", "BODY.PEEK[HEADER]")

SEEN = "\\Seen"
ANSWERED = "\\Answered"
FLAGGED = "\\Flagged"
DELETED = "\\Deleted"
DRAFT = "\\Draft"
RECENT = "\\Recent"


def _text(value: Union[bytes, str]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class Message:
    """A message addressed by UID within one :class:`Mailbox`."""

    def __init__(self, mailbox: "Mailbox", uid: int) -> None:
        self._mailbox = mailbox
        self._uid = int(uid)
        self._data: Optional[Dict[bytes, object]] = None
        self._generation = -1
        self._headers: Optional[EmailMessage] = None

    def __repr__(self) -> str:
        return f"<Message uid={self._uid} mailbox={self._mailbox.name!r}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self._uid == other._uid and self._mailbox is other._mailbox

    def __hash__(self) -> int:
        return hash((id(self._mailbox), self._uid))

    @property
    def uid(self) -> int:
        return self._uid

    @property
    def mailbox(self) -> "Mailbox":
        return self._mailbox

    def _fetched(self) -> Dict[bytes, object]:
        generation = self._mailbox._expunge_generation
        if self._data is None or self._generation != generation:
            self._headers = None
            self._data = self._mailbox._fetch_one(self._uid, FETCH_ITEMS)
            self._generation = generation
        return self._data

    def refresh(self) -> "Message":
        """Drop cached metadata; the next property read fetches again."""

        self._data = None
        self._headers = None
        return self

    # Flags ------------------------------------------------------------
    @property
    def flags(self) -> Tuple[str, ...]:
        return tuple(_text(flag) for flag in self._fetched().get(b"FLAGS", ()))  # type: ignore[union-attr]

    def has_flag(self, flag: str) -> bool:
        wanted = flag.lower()
        return any(existing.lower() == wanted for existing in self.flags)

    @property
    def is_seen(self) -> bool:
        return self.has_flag(SEEN)

    @property
    def is_answered(self) -> bool:
        return self.has_flag(ANSWERED)

    @property
    def is_flagged(self) -> bool:
        return self.has_flag(FLAGGED)

    @property
    def is_deleted(self) -> bool:
        return self.has_flag(DELETED)

    @property
    def is_draft(self) -> bool:
        return self.has_flag(DRAFT)

    @property
    def is_recent(self) -> bool:
        return self.has_flag(RECENT)

    # Envelope -----------------------------------------------------------
    @property
    def internal_date(self) -> Optional[datetime]:
        value = self._fetched().get(b"INTERNALDATE")
        return value if isinstance(value, datetime) else None

    @property
    def maildate(self) -> Optional[str]:
        """INTERNALDATE rendered as ``" 3-Jan-2012 09:30:03 +0000"``."""

        moment = self.internal_date
        return format_internal_date(moment) if moment is not None else None

    @property
    def size(self) -> int:
        return int(self._fetched().get(b"RFC822.SIZE", 0))  # type: ignore[arg-type]

    @property
    def headers(self) -> EmailMessage:
        data = self._fetched()
        if self._headers is None:
            raw = data.get(b"BODY[HEADER]") or b""
            if isinstance(raw, str):
                raw = raw.encode("utf-8")
            self._headers = BytesParser(policy=policy.default).parsebytes(raw, headersonly=True)  # type: ignore[arg-type]
        return self._headers

    def _header(self, name: str) -> Optional[str]:
        value = self.headers.get(name)
        return str(value) if value is not None else None

    @property
    def subject(self) -> Optional[str]:
        return self._header("Subject")

    @property
    def from_(self) -> Optional[str]:
        return self._header("From")

    @property
    def to(self) -> Optional[str]:
        return self._header("To")

    @property
    def message_id(self) -> Optional[str]:
        return self._header("Message-ID")

    @property
    def date(self) -> Optional[datetime]:
        """The ``Date:`` header, or ``None`` when absent or unparsable."""

        value = self._header("Date")
        if not value:
            return None
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None

    @property
    def raw_message(self) -> bytes:
        """Full RFC 822 source, fetched on every call without setting ``\\Seen``."""

        data = self._mailbox._fetch_one(self._uid, ("BODY.PEEK[]",))
        raw = data.get(b"BODY[]") or b""
        return raw if isinstance(raw, bytes) else _text(raw).encode("utf-8")

    # Mutators ---------------------------------------------------------
    def set_flag(self, flag: str) -> None:
        self._mailbox.set_flag(flag, self._uid)
        self.refresh()

    def clear_flag(self, flag: str) -> None:
        self._mailbox.clear_flag(flag, self._uid)
        self.refresh()

    def delete(self) -> None:
        """Mark as ``\\Deleted``; the message disappears on the next expunge."""

        self.set_flag(DELETED)

    def undelete(self) -> None:
        self.clear_flag(DELETED)

    def copy(self, target) -> None:
        self._mailbox.copy(self._uid, target)

    def move(self, target, *, atomic: bool = False) -> None:
        self._mailbox.move(self._uid, target, atomic=atomic)
        self.refresh()
