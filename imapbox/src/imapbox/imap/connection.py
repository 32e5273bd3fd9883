"""Account-level entry point: authenticated connection and mailbox registry.

What:
  Provide :class:`Connection`, which lists, creates and deletes folders and
  hands out :class:`~imapbox.imap.mailbox.Mailbox` objects, plus
  :func:`connect`, which builds one from a :class:`ServerConfig`.

Why:
  Mailbox objects share a single :class:`ResourceHandle`; something has to
  own that handle, remember which mailbox objects it gave out, and unbind
  them when their folder is deleted through it.

How:
  The folder listing is fetched lazily and cached as mailbox objects.
  Lookups key the cache by each mailbox's current name so renames done
  through :meth:`Mailbox.rename_to` are reflected without a round trip.

Interfaces:
  :class:`Connection`, :func:`connect`.

Invariants & Safety:
  - The cache is not refreshed behind the caller's back; pass
    ``refresh=True`` to pick up external changes.
  - Deleting a folder unbinds every cached mailbox object for it.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

from ..config.loader import get_config
from ..config.schema import ServerConfig
from ..exceptions import (
    CreateMailboxException,
    DeleteMailboxException,
    MailboxDoesNotExistException,
)
from ..utils.logging import configure, get_logger
from .mailbox import Mailbox
from .names import MailboxName
from .resource import ResourceHandle
from .status import parse_attributes

_log = get_logger("imap.connection")


class Connection:
    """An authenticated IMAP account session."""

    def __init__(self, handle: ResourceHandle) -> None:
        self._handle = handle
        self._mailboxes: Optional[List[Mailbox]] = None

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def handle(self) -> ResourceHandle:
        return self._handle

    @property
    def config(self) -> ServerConfig:
        return self._handle.config

    def close(self) -> None:
        self._handle.close()
        self._mailboxes = None

    def ping(self) -> bool:
        return self._handle.ping()

    @property
    def capabilities(self) -> Tuple[str, ...]:
        return self._handle.capabilities()

    def _load(self) -> List[Mailbox]:
        known = {mailbox.encoded_name: mailbox for mailbox in self._mailboxes or () if mailbox.is_bound}
        listed: List[Mailbox] = []
        for flags, delimiter, encoded in self._handle.list():
            mailbox = known.get(encoded)
            if mailbox is None:
                mailbox = Mailbox(
                    self._handle,
                    MailboxName.from_wire(encoded),
                    attributes=parse_attributes(flags),
                    delimiter=delimiter,
                )
            listed.append(mailbox)
        return listed

    def get_mailboxes(self, refresh: bool = False) -> Dict[str, Mailbox]:
        """Return bound mailboxes keyed by their UTF-8 name."""

        if self._mailboxes is None or refresh:
            self._mailboxes = self._load()
        return {mailbox.name: mailbox for mailbox in self._mailboxes if mailbox.is_bound}

    def has_mailbox(self, name: str) -> bool:
        return name in self.get_mailboxes()

    def get_mailbox(self, name: str) -> Mailbox:
        """Return the mailbox called ``name``.

        Raises:
          MailboxDoesNotExistException: If the account has no such folder.
        """

        mailboxes = self.get_mailboxes()
        if name not in mailboxes:
            raise MailboxDoesNotExistException(name)
        return mailboxes[name]

    def count(self) -> int:
        """Number of folders in the account."""

        return len(self.get_mailboxes())

    def create_mailbox(self, name: str) -> Mailbox:
        """Create ``name`` and return its mailbox.

        Raises:
          CreateMailboxException: With the server text, e.g. when it exists.
        """

        mailbox_name = MailboxName(name)
        self._handle.create(mailbox_name.encoded, error=CreateMailboxException)
        _log.info("mailbox created", mailbox=name)
        created = self.get_mailboxes(refresh=True).get(name)
        if created is None:
            # Listed under a server-normalised name; listing data loads lazily.
            created = Mailbox(self._handle, mailbox_name)
        return created

    def delete_mailbox(self, mailbox: Union[Mailbox, str]) -> None:
        """Delete a folder and unbind every mailbox object pointing at it.

        Raises:
          DeleteMailboxException: With the server text.
        """

        encoded = mailbox.encoded_name if isinstance(mailbox, Mailbox) else MailboxName(mailbox).encoded
        self._handle.delete(encoded, error=DeleteMailboxException)
        _log.info("mailbox deleted", mailbox=encoded)
        stale = [m for m in self._mailboxes or () if m.encoded_name == encoded]
        if isinstance(mailbox, Mailbox):
            stale.append(mailbox)
        for item in stale:
            item._unbind()
        if self._mailboxes is not None:
            self._mailboxes = [m for m in self._mailboxes if m.is_bound]

    def expunge(self) -> None:
        """Expunge the currently selected folder, if any."""

        self._handle.expunge()


def connect(config: Optional[ServerConfig] = None) -> Connection:
    """Open and authenticate a connection.

    ``config`` defaults to :func:`~imapbox.config.loader.get_config`. The
    logger threshold follows ``config.log_level``.

    Raises:
      AuthenticationFailedException: When the credentials are refused.
      ConnectionException: When the server cannot be reached.
    """

    config = config or get_config()
    configure(level=config.log_level)
    handle = ResourceHandle(config)
    handle.connect()
    return Connection(handle)
