"""Mailbox orchestrator and message iterator.

What:
  Expose one server-side folder as a :class:`Mailbox` object: its names,
  LIST attributes, STATUS counters, search/sort/sequence listings, thread
  tree, bulk flag/copy/move operations, APPEND and EXPUNGE.

Why:
  Callers think in terms of "this folder" while the protocol thinks in terms
  of a single selected folder per connection and raw sequence tokens. The
  orchestrator owns the binding between the two, normalises every id input
  at the boundary, and maps server refusals onto operation-specific errors so
  callers can react without parsing server text.

How:
  Each operation validates its input locally (sequence tokens, search
  charsets, names), then issues exactly one request (two for the default
  move) through the shared :class:`~imapbox.imap.resource.ResourceHandle`.
  A ``ReopenMailboxException`` from the handle flips the mailbox into the
  unbound state, after which every operation fails the same way.

Interfaces:
  :class:`Mailbox`, :class:`MessageIterator`.

Invariants & Safety:
  - Messages are addressed by UID; message numbers only appear in
    :meth:`Mailbox.get_message_sequence` with ``uid=False``.
  - A failed bulk copy/move leaves the source folder unchanged.
  - The default :meth:`Mailbox.move` marks sources ``\\Deleted`` and needs an
    expunge to finish, even when the server supports ``MOVE``.
"""
from __future__ import annotations

import contextlib
from collections import abc
from datetime import datetime
from typing import Dict, Iterable, Iterator, Optional, Sequence, Tuple, Union

from ..exceptions import (
    AppendMessageException,
    InvalidSearchCriteriaException,
    MessageCopyException,
    MessageDoesNotExistException,
    MessageFlagException,
    MessageMoveException,
    RenameMailboxException,
    ReopenMailboxException,
)
from ..utils.logging import get_logger
from .message import DELETED, Message
from .names import MailboxName
from .resource import ResourceHandle
from .search import Criterion, SearchExpression, as_expression
from .sequence import IdInput, SequenceSet, parse as parse_sequence
from .status import (
    MailboxAttribute,
    MailboxStatus,
    SortKey,
    StatusFlag,
    parse_attributes,
    status_items,
    to_utc,
)
from .thread import flatten

_log = get_logger("imap.mailbox")

MessagesInput = Union[IdInput, "MessageIterator", Message, Iterable[Message]]
Target = Union["Mailbox", MailboxName, str]


class MessageIterator(abc.Sequence):
    """Ordered, cached list of UIDs yielding lazy :class:`Message` handles.

    Membership is fixed when the iterator is built; message content is only
    fetched when a yielded message is read.
    """

    def __init__(self, mailbox: "Mailbox", ids: Iterable[int]) -> None:
        self._mailbox = mailbox
        self._ids: Tuple[int, ...] = tuple(int(uid) for uid in ids)

    @property
    def mailbox(self) -> "Mailbox":
        return self._mailbox

    @property
    def ids(self) -> Tuple[int, ...]:
        return self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return MessageIterator(self._mailbox, self._ids[index])
        return self._mailbox.get_message(self._ids[index])

    def __iter__(self) -> Iterator[Message]:
        for uid in self._ids:
            yield self._mailbox.get_message(uid)

    def __repr__(self) -> str:
        return f"<MessageIterator mailbox={self._mailbox.name!r} ids={list(self._ids)!r}>"


def _target_name(target: Target) -> str:
    if isinstance(target, Mailbox):
        return target.encoded_name
    if isinstance(target, MailboxName):
        return target.encoded
    return MailboxName(target).encoded


def _collect(messages: MessagesInput) -> Optional[SequenceSet]:
    """Normalise bulk inputs; ``None`` means there is nothing to do."""

    if isinstance(messages, MessageIterator):
        ids: Sequence[Union[int, str]] = messages.ids
        if not ids:
            return None
    elif isinstance(messages, Message):
        ids = [messages.uid]
    elif isinstance(messages, (int, str, bytes, SequenceSet)):
        return parse_sequence(messages)
    else:
        items = list(messages)
        if items and all(isinstance(item, Message) for item in items):
            ids = [item.uid for item in items]  # type: ignore[union-attr]
        else:
            ids = items  # type: ignore[assignment]
    return parse_sequence(list(dict.fromkeys(ids)))


class Mailbox:
    """One folder of an IMAP account.

    What:
      Holds the folder's :class:`MailboxName`, cached LIST data and the
      binding state, and offers the folder level operations.

    Why:
      Keeping the binding on the object (instead of on the connection) lets
      one connection serve many mailboxes and makes "this folder was deleted"
      an explicit, sticky state.

    How:
      Instances are normally produced by
      :class:`~imapbox.imap.connection.Connection`. Every server operation
      runs inside :meth:`_guard`, which refuses to run when unbound and
      unbinds the mailbox when the server reports it missing.
    """

    def __init__(
        self,
        handle: ResourceHandle,
        name: Union[str, MailboxName],
        attributes: Optional[MailboxAttribute] = None,
        delimiter: Optional[str] = None,
    ) -> None:
        self._handle = handle
        self._name = name if isinstance(name, MailboxName) else MailboxName(name)
        self._attributes = attributes
        self._delimiter = delimiter
        self._bound = True
        self._expunge_generation = 0

    def __repr__(self) -> str:
        state = "" if self._bound else " unbound"
        return f"<Mailbox {self._name.raw!r}{state}>"

    def __iter__(self) -> Iterator[Message]:
        return iter(self.get_messages())

    # Names ------------------------------------------------------------
    @property
    def name(self) -> str:
        return self._name.raw

    def get_name(self) -> str:
        return self.name

    @property
    def encoded_name(self) -> str:
        return self._name.encoded

    def get_encoded_name(self) -> str:
        return self.encoded_name

    @property
    def full_encoded_name(self) -> str:
        """``{host[:port]}name`` with the modified UTF-7 name."""

        config = self._handle.config
        return self._name.full_specifier(config.host, config.port, ssl=config.ssl)

    def get_full_encoded_name(self) -> str:
        return self.full_encoded_name

    @property
    def is_bound(self) -> bool:
        return self._bound

    def _unbind(self) -> None:
        if self._bound:
            _log.info("mailbox unbound", mailbox=self.name)
        self._bound = False
        self._handle.forget(self.encoded_name)

    def _ensure_bound(self) -> None:
        if not self._bound:
            raise ReopenMailboxException(
                f'Mailbox "{self.name}" is no longer available; reopen it from the connection'
            )

    @contextlib.contextmanager
    def _guard(self) -> Iterator[None]:
        self._ensure_bound()
        try:
            yield
        except ReopenMailboxException:
            self._unbind()
            raise

    def rename_to(self, new_name: Union[str, MailboxName]) -> bool:
        """Rename the folder and rebind this object to the new name.

        Raises:
          RenameMailboxException: With the server text; the current name is
            kept.
          EncodingError: If ``new_name`` cannot be encoded.
        """

        target = new_name if isinstance(new_name, MailboxName) else MailboxName(new_name)
        with self._guard():
            self._handle.rename(self.encoded_name, target.encoded, error=RenameMailboxException)
        _log.info("mailbox renamed", mailbox=self.name, target=target.raw)
        self._name = target
        return True

    # LIST / STATUS ----------------------------------------------------
    def _load_listing(self) -> None:
        with self._guard():
            entries = self._handle.list(pattern=self.encoded_name)
        for flags, delimiter, encoded in entries:
            if encoded == self.encoded_name:
                self._attributes = parse_attributes(flags)
                self._delimiter = delimiter
                return
        self._unbind()
        self._ensure_bound()

    @property
    def attributes(self) -> MailboxAttribute:
        if self._attributes is None:
            self._load_listing()
        return self._attributes  # type: ignore[return-value]

    def get_attributes(self) -> MailboxAttribute:
        return self.attributes

    @property
    def delimiter(self) -> Optional[str]:
        if self._delimiter is None:
            self._load_listing()
        return self._delimiter

    def get_delimiter(self) -> Optional[str]:
        return self.delimiter

    def get_status(self, flags: Union[StatusFlag, int] = StatusFlag.ALL) -> MailboxStatus:
        """Fetch STATUS counters in one round trip.

        Only the items selected by ``flags`` are populated; the rest stay
        ``None``.

        Raises:
          ReopenMailboxException: If the folder no longer exists.
        """

        flags = StatusFlag(flags)
        items = status_items(flags)
        with self._guard():
            reply = self._handle.status(self.encoded_name, items)
        return MailboxStatus.from_reply(flags, reply)

    def count(self) -> int:
        return int(self.get_status(StatusFlag.MESSAGES).messages or 0)

    # Listings ---------------------------------------------------------
    def get_messages(
        self,
        criteria: Union[None, Criterion, SearchExpression] = None,
        sort: Union[None, SortKey, str] = None,
        descending: bool = False,
        charset: Optional[str] = None,
    ) -> MessageIterator:
        """Return the messages matching ``criteria``.

        Args:
          criteria: A predicate or :class:`SearchExpression`; ``None`` matches
            every message.
          sort: Server-side SORT key. ``None`` keeps the SEARCH (UID) order.
          descending: Reverse the sort order; ignored without ``sort``.
          charset: Charset of the text values. Defaults to ``UTF-8`` when a
            value is non-ASCII text.

        Raises:
          InvalidSearchCriteriaException: For unusable criteria or charsets,
            locally or with the server text.
        """

        expression = as_expression(criteria)
        effective = expression.effective_charset(charset)
        tokens = expression.to_criteria(effective)
        with self._guard():
            if sort is None:
                ids = self._handle.search(
                    self.encoded_name, tokens, effective, error=InvalidSearchCriteriaException
                )
            else:
                try:
                    key = SortKey(sort.upper() if isinstance(sort, str) else sort)
                except ValueError as exc:
                    raise InvalidSearchCriteriaException(f"Unknown sort key {sort!r}") from exc
                ids = self._handle.sort(
                    self.encoded_name,
                    key.criteria(descending),
                    tokens,
                    effective or "UTF-8",
                    error=InvalidSearchCriteriaException,
                )
        return MessageIterator(self, ids)

    def get_message_sequence(self, sequence: IdInput, uid: bool = True) -> MessageIterator:
        """FETCH a sequence set directly; ranges past the end match nothing."""

        sequence_set = parse_sequence(sequence, uid=uid)
        with self._guard():
            reply = self._handle.fetch(
                self.encoded_name, sequence_set, ["UID"], error=InvalidSearchCriteriaException
            )
        ordered = sorted(reply.items(), key=lambda item: int(item[1].get(b"SEQ", item[0])))
        return MessageIterator(self, [int(data.get(b"UID", key)) for key, data in ordered])

    def get_message(self, uid: int) -> Message:
        return Message(self, uid)

    def _fetch_one(self, uid: int, items: Sequence[str]) -> Dict[bytes, object]:
        with self._guard():
            reply = self._handle.fetch(self.encoded_name, parse_sequence(uid), items)
        data = reply.get(uid)
        if data is None:
            raise MessageDoesNotExistException(uid, self.name)
        return data

    def get_thread(self) -> Dict[str, int]:
        """Thread the folder by References and flatten the tree.

        Keys are ``"<index>.num"``, ``"<index>.next"`` and ``"<index>.branch"``
        in discovery order; an empty folder yields ``{}``.
        """

        with self._guard():
            reply = self._handle.thread(self.encoded_name, "REFERENCES", "ALL", "UTF-8")
        return flatten(reply)

    # Bulk mutations ---------------------------------------------------
    def set_flag(self, flag: str, messages: MessagesInput) -> bool:
        """Add ``flag`` to every message in ``messages`` with one STORE."""

        return self._store(flag, messages, add=True)

    def clear_flag(self, flag: str, messages: MessagesInput) -> bool:
        return self._store(flag, messages, add=False)

    def _store(self, flag: str, messages: MessagesInput, *, add: bool) -> bool:
        sequence = _collect(messages)
        if sequence is None:
            return True
        with self._guard():
            self._handle.store_flags(
                self.encoded_name, sequence, [flag], add=add, error=MessageFlagException
            )
        return True

    def copy(self, messages: MessagesInput, target: Target) -> bool:
        """Copy ``messages`` into ``target`` with one COPY.

        Raises:
          MessageCopyException: When the server refuses, e.g. because
            ``target`` does not exist.
        """

        sequence = _collect(messages)
        if sequence is None:
            return True
        target_name = _target_name(target)
        with self._guard():
            self._handle.copy(self.encoded_name, sequence, target_name, error=MessageCopyException)
        _log.info("messages copied", mailbox=self.name, sequence=sequence.token, target=target_name)
        return True

    def move(self, messages: MessagesInput, target: Target, *, atomic: bool = False) -> bool:
        """Move ``messages`` into ``target``.

        By default this is COPY followed by ``+FLAGS \\Deleted``; the sources
        disappear on the next expunge. With ``atomic=True`` and a server that
        advertises ``MOVE`` the server command is used instead and no expunge
        is needed.

        Raises:
          MessageMoveException: When either step is refused. A refused COPY
            leaves the source untouched.
        """

        sequence = _collect(messages)
        if sequence is None:
            return True
        target_name = _target_name(target)
        with self._guard():
            if atomic and self._handle.has_capability("MOVE"):
                self._handle.move(self.encoded_name, sequence, target_name, error=MessageMoveException)
            else:
                self._handle.copy(self.encoded_name, sequence, target_name, error=MessageMoveException)
                self._handle.store_flags(
                    self.encoded_name, sequence, [DELETED], add=True, error=MessageMoveException
                )
        _log.info(
            "messages moved", mailbox=self.name, sequence=sequence.token, target=target_name, atomic=atomic
        )
        return True

    def add_message(
        self,
        content: Union[bytes, str],
        flags: Union[None, str, Sequence[str]] = None,
        internal_date: Optional[datetime] = None,
    ) -> bool:
        """APPEND ``content``; ``internal_date`` is stored in UTC.

        Raises:
          AppendMessageException: When the server refuses the message.
        """

        if flags is None:
            flag_list: Tuple[str, ...] = ()
        elif isinstance(flags, str):
            flag_list = tuple(flags.split())
        else:
            flag_list = tuple(flags)
        moment = to_utc(internal_date) if internal_date is not None else None
        with self._guard():
            self._handle.append(
                self.encoded_name, content, flag_list, moment, error=AppendMessageException
            )
        return True

    def expunge(self) -> None:
        """Permanently remove messages flagged ``\\Deleted`` in this folder."""

        with self._guard():
            self._handle.expunge(self.encoded_name)
        self._expunge_generation += 1
