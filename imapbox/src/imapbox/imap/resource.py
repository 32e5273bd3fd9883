"""Single-connection IMAP resource handle.

What:
  Own one authenticated ``imapclient.IMAPClient`` and expose the primitive
  requests the rest of imapbox is built on (select, list, status, search,
  sort, thread, fetch, store, copy, move, append, create, rename, delete,
  expunge), each parameterised by a wire-encoded mailbox name.

Why:
  ``imapclient`` is stateful (one selected folder, one in-flight command) and
  reports every failure as the same exception family. Funnelling all traffic
  through one handle gives a single place to serialise requests, avoid
  redundant SELECTs, rate-limit mutations, and turn server rejections into the
  domain exceptions callers expect.

How:
  Connects lazily in :meth:`connect` (or ``__enter__``), switches off
  ``imapclient``'s own folder-name encoding and local-time normalisation, and
  runs every primitive inside :meth:`_command`, which holds the handle lock and
  translates ``IMAPClientAbortError``/``OSError`` into
  :class:`~imapbox.exceptions.ConnectionException` and other
  ``IMAPClientError`` into the caller-chosen rejection type, keeping the
  server text verbatim.

Interfaces:
  :class:`ResourceHandle`.

Invariants & Safety:
  - All message addressing is UID based unless a :class:`SequenceSet` asks
    for message numbers, in which case ``use_uid`` is flipped for that one
    request only.
  - Requests on one handle never overlap; callers needing concurrency open
    separate handles.
  - Nothing is retried here.
"""
from __future__ import annotations

import contextlib
import threading
import time
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, IMAPClientReadOnlyError

from ..config.schema import ServerConfig
from ..exceptions import (
    AuthenticationFailedException,
    ConnectionException,
    ImapboxError,
    ProtocolRejection,
    RateLimitExceededException,
    ReopenMailboxException,
)
from ..utils.logging import get_logger
from .sequence import SequenceSet

ListEntry = Tuple[Tuple[bytes, ...], Optional[str], str]

_log = get_logger("imap.resource")


def _text(value: Union[bytes, str, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("ascii", errors="replace")
    return str(value)


class ResourceHandle:
    """Context manager owning one IMAP connection.

    What:
      Holds the ``IMAPClient`` instance, the name of the currently selected
      folder, the action timestamps used for rate limiting, and a re-entrant
      lock that serialises requests.

    Why:
      Mailboxes and messages borrow the handle instead of owning connections,
      so selection state must be tracked in exactly one place to avoid
      issuing commands against the wrong folder.

    How:
      :meth:`select` only sends ``SELECT`` when the requested folder differs
      from the cached selection; operations that invalidate a folder
      (rename, delete) clear the cache.
    """

    def __init__(self, config: ServerConfig, client: Optional[IMAPClient] = None):
        self._config = config
        self._client: Optional[IMAPClient] = client
        self._selected: Optional[str] = None
        self._actions: Deque[float] = deque()
        self._lock = threading.RLock()
        self._log = _log.bind(host=config.host)
        if client is not None:
            self._prepare(client)

    def __enter__(self) -> "ResourceHandle":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> IMAPClient:
        """Expose the underlying ``IMAPClient`` for calls not wrapped here.

        Raises:
          ConnectionException: If accessed before :meth:`connect`.
        """

        if self._client is None:
            raise ConnectionException("IMAP connection is not open")
        return self._client

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    @staticmethod
    def _prepare(client: IMAPClient) -> None:
        client.folder_encode = False
        client.normalise_times = False
        client.use_uid = True

    def connect(self) -> None:
        """Open the connection and log in.

        Raises:
          AuthenticationFailedException: When the server rejects the
            credentials.
          ConnectionException: When the server cannot be reached.
        """

        if self._client is not None:
            return
        config = self._config
        try:
            client = IMAPClient(config.host, port=config.port, ssl=config.ssl, timeout=config.timeout)
        except (IMAPClientError, OSError) as exc:
            self._log.error("connect failed", port=config.port, error=str(exc))
            raise ConnectionException(f"Cannot connect to {config.host}:{config.port}: {exc}") from exc
        try:
            client.login(config.username, config.password)
        except IMAPClientAbortError as exc:
            raise ConnectionException(str(exc)) from exc
        except IMAPClientError as exc:
            self._log.error("login failed", user=config.username, error=str(exc))
            raise AuthenticationFailedException(str(exc)) from exc
        self._prepare(client)
        self._client = client
        self._selected = None
        self._log.info("connected", port=config.port, user=config.username)

    def close(self) -> None:
        """Log out and drop the connection; errors during logout are logged."""

        with self._lock:
            if self._client is None:
                return
            try:
                self._client.logout()
            except (IMAPClientError, OSError) as exc:
                self._log.warning("logout failed", error=str(exc))
            finally:
                self._client = None
                self._selected = None

    def reconnect(self) -> None:
        """Drop the current connection (if any) and open a fresh one."""

        with self._lock:
            if self._client is not None:
                self.close()
            self._log.info("reconnecting")
            self.connect()

    def ping(self) -> bool:
        """Send ``NOOP``; return ``False`` when the connection is unusable."""

        with self._lock:
            if self._client is None:
                return False
            try:
                self._client.noop()
            except (IMAPClientError, OSError) as exc:
                self._log.warning("ping failed", error=str(exc))
                return False
            return True

    def capabilities(self) -> Tuple[str, ...]:
        with self._command("capability"):
            return tuple(_text(cap) or "" for cap in self.client.capabilities())

    def has_capability(self, name: str) -> bool:
        wanted = name.upper()
        return any(cap.upper() == wanted for cap in self.capabilities())

    def _throttle(self) -> None:
        limit = self._config.max_actions_per_minute
        if not limit:
            return
        now = time.monotonic()
        while self._actions and now - self._actions[0] > 60:
            self._actions.popleft()
        if len(self._actions) >= limit:
            raise RateLimitExceededException(f"IMAP action rate limit of {limit}/min exceeded")
        self._actions.append(now)

    @contextlib.contextmanager
    def _command(self, name: str, error: Type[ImapboxError] = ProtocolRejection, **context) -> Iterator[None]:
        with self._lock:
            self._log.debug("command", command=name, **context)
            try:
                yield
            except IMAPClientReadOnlyError as exc:
                self._log.warning("command rejected", command=name, error=str(exc), **context)
                raise error(str(exc)) from exc
            except IMAPClientAbortError as exc:
                self._client = None
                self._selected = None
                self._log.error("connection lost", command=name, error=str(exc), **context)
                raise ConnectionException(str(exc)) from exc
            except IMAPClientError as exc:
                self._log.warning("command rejected", command=name, error=str(exc), **context)
                raise error(str(exc)) from exc
            except OSError as exc:
                self._client = None
                self._selected = None
                self._log.error("transport error", command=name, error=str(exc), **context)
                raise ConnectionException(str(exc)) from exc

    @contextlib.contextmanager
    def _addressing(self, sequence: SequenceSet) -> Iterator[IMAPClient]:
        client = self.client
        previous = client.use_uid
        client.use_uid = sequence.uid
        try:
            yield client
        finally:
            client.use_uid = previous

    # Folder level -----------------------------------------------------
    def select(self, mailbox: str, *, readonly: bool = False) -> None:
        """Make ``mailbox`` the selected folder unless it already is.

        Raises:
          ReopenMailboxException: If the server refuses the selection.
        """

        with self._lock:
            if self._selected == mailbox:
                return
            with self._command("select", ReopenMailboxException, mailbox=mailbox):
                self._selected = None
                self.client.select_folder(mailbox, readonly=readonly)
            self._selected = mailbox

    def forget(self, mailbox: Optional[str] = None) -> None:
        """Drop the cached selection (only if it is ``mailbox`` when given)."""

        with self._lock:
            if mailbox is None or self._selected == mailbox:
                self._selected = None

    def list(self, pattern: str = "*", directory: str = "") -> List[ListEntry]:
        """Return ``(flags, delimiter, encoded_name)`` for matching folders."""

        with self._command("list", pattern=pattern):
            entries = self.client.list_folders(directory, pattern)
        return [(tuple(flags), _text(delimiter), _text(name) or "") for flags, delimiter, name in entries]

    def create(self, mailbox: str, *, error: Type[ImapboxError] = ProtocolRejection) -> None:
        with self._command("create", error, mailbox=mailbox):
            self._throttle()
            self.client.create_folder(mailbox)

    def delete(self, mailbox: str, *, error: Type[ImapboxError] = ProtocolRejection) -> None:
        with self._command("delete", error, mailbox=mailbox):
            self._throttle()
            self.client.delete_folder(mailbox)
            self.forget(mailbox)

    def rename(self, old: str, new: str, *, error: Type[ImapboxError] = ProtocolRejection) -> None:
        with self._command("rename", error, mailbox=old, target=new):
            self._throttle()
            self.client.rename_folder(old, new)
            self.forget(old)

    def status(self, mailbox: str, items: Sequence[str]) -> Dict[bytes, int]:
        """Issue ``STATUS`` for ``items``.

        Raises:
          ReopenMailboxException: If the server refuses, which in practice
            means the folder is gone.
        """

        with self._command("status", ReopenMailboxException, mailbox=mailbox):
            return self.client.folder_status(mailbox, list(items))

    def expunge(self, mailbox: Optional[str] = None) -> None:
        """Expunge ``mailbox`` (default: whatever is currently selected)."""

        with self._lock:
            if mailbox is not None:
                self.select(mailbox)
            elif self._selected is None:
                return
            with self._command("expunge", mailbox=self._selected):
                self.client.expunge()

    # Message level ----------------------------------------------------
    def search(
        self,
        mailbox: str,
        criteria: list,
        charset: Optional[str] = None,
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> List[int]:
        with self._lock:
            self.select(mailbox)
            with self._command("search", error, mailbox=mailbox, charset=charset):
                return list(self.client.search(criteria, charset))

    def sort(
        self,
        mailbox: str,
        sort_criteria: Union[str, Sequence[str]],
        criteria: list,
        charset: str = "UTF-8",
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> List[int]:
        with self._lock:
            self.select(mailbox)
            with self._command("sort", error, mailbox=mailbox, sort=str(sort_criteria), charset=charset):
                return list(self.client.sort(sort_criteria, criteria, charset))

    def thread(
        self,
        mailbox: str,
        algorithm: str = "REFERENCES",
        criteria: Union[str, list] = "ALL",
        charset: str = "UTF-8",
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> tuple:
        with self._lock:
            self.select(mailbox)
            with self._command("thread", error, mailbox=mailbox, algorithm=algorithm):
                return tuple(self.client.thread(algorithm, criteria, charset))

    def fetch(
        self,
        mailbox: str,
        sequence: SequenceSet,
        items: Sequence[str],
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> Dict[int, Dict[bytes, object]]:
        with self._lock:
            self.select(mailbox)
            with self._command("fetch", error, mailbox=mailbox, sequence=sequence.token):
                with self._addressing(sequence) as client:
                    return dict(client.fetch(sequence.token, list(items)))

    def store_flags(
        self,
        mailbox: str,
        sequence: SequenceSet,
        flags: Sequence[str],
        *,
        add: bool = True,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> None:
        """Add (``+FLAGS``) or remove (``-FLAGS``) ``flags`` in one STORE."""

        with self._lock:
            self.select(mailbox)
            with self._command("store", error, mailbox=mailbox, sequence=sequence.token, add=add):
                self._throttle()
                with self._addressing(sequence) as client:
                    if add:
                        client.add_flags(sequence.token, list(flags), silent=True)
                    else:
                        client.remove_flags(sequence.token, list(flags), silent=True)

    def copy(
        self,
        mailbox: str,
        sequence: SequenceSet,
        target: str,
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> None:
        with self._lock:
            self.select(mailbox)
            with self._command("copy", error, mailbox=mailbox, sequence=sequence.token, target=target):
                self._throttle()
                with self._addressing(sequence) as client:
                    client.copy(sequence.token, target)

    def move(
        self,
        mailbox: str,
        sequence: SequenceSet,
        target: str,
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> None:
        """Server-side atomic ``MOVE`` (RFC 6851)."""

        with self._lock:
            self.select(mailbox)
            with self._command("move", error, mailbox=mailbox, sequence=sequence.token, target=target):
                self._throttle()
                with self._addressing(sequence) as client:
                    client.move(sequence.token, target)

    def append(
        self,
        mailbox: str,
        content: Union[bytes, str],
        flags: Sequence[str] = (),
        internal_date: Optional[datetime] = None,
        *,
        error: Type[ImapboxError] = ProtocolRejection,
    ) -> None:
        with self._command("append", error, mailbox=mailbox, flags=list(flags), size=len(content)):
            self._throttle()
            self.client.append(mailbox, content, tuple(flags), internal_date)
