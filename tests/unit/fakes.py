"""In-memory IMAP backend used by unit tests.

What:
  Provide a drop-in replacement for :class:`imapclient.IMAPClient` that stores
  folders and messages in Python data structures while exposing the subset of
  the IMAP API imapbox relies on (LIST, SELECT, STATUS, SEARCH, SORT, THREAD,
  FETCH, STORE, COPY, MOVE, APPEND, EXPUNGE and folder management).

Why:
  Unit tests must exercise mailbox workflows without contacting real servers.
  The fake keeps behaviour deterministic and lets tests assert on server
  state directly.

How:
  Maintain per-folder dictionaries of :class:`_MessageRecord` entries keyed by
  UID with a per-folder ``uidnext`` counter. Search criteria are interpreted
  from the token lists imapbox hands to ``IMAPClient`` (nested lists, ``OR``,
  ``NOT``, bytes values in the declared charset). Failures raise
  ``imapclient`` exceptions carrying server-like text.

Interfaces:
  :class:`FakeImapBackend`, :func:`make_message`.

Invariants & Safety:
  - UIDs increase monotonically per folder and are never reused.
  - Folder names are stored exactly as sent (already modified UTF-7).
  - Methods avoid network calls and operate solely on in-memory data.
"""

from __future__ import annotations

import codecs
import fnmatch
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from imapclient.exceptions import IMAPClientError, LoginError


def make_message(
    subject: str,
    body: str = "Hello",
    *,
    sender: str = "alice@example.test",
    to: str = "bob@example.test",
    charset: str = "utf-8",
    message_id: Optional[str] = None,
    in_reply_to: Optional[str] = None,
    date_header: Optional[str] = None,
) -> bytes:
    """Build a small RFC 822 message for seeding the fake backend."""

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = to
    if message_id:
        message["Message-ID"] = message_id
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
        message["References"] = in_reply_to
    if date_header:
        message["Date"] = date_header
    message.set_content(body, charset=charset)
    return message.as_bytes(policy=policy.SMTP)


@dataclass
class _MessageRecord:
    """Internal representation of a stored message.

    What:
      Capture the raw bytes plus the server-side metadata (flags, internal
      date) needed to answer FETCH and SEARCH.

    Why:
      Tests need faithful ``BODY[HEADER]`` and ``BODY[]`` responses while
      searching on decoded header and body text.

    How:
      Keeps the original bytes and parses them lazily with
      :class:`BytesParser` whenever header or body text is required.
    """

    uid: int
    message_bytes: bytes
    internaldate: datetime
    flags: Set[str] = field(default_factory=set)

    @property
    def parsed(self) -> EmailMessage:
        return BytesParser(policy=policy.default).parsebytes(self.message_bytes)  # type: ignore[return-value]

    @property
    def header_bytes(self) -> bytes:
        for separator in (b"\r\n\r\n", b"\n\n"):
            head, found, _ = self.message_bytes.partition(separator)
            if found:
                return head + separator
        return self.message_bytes

    def header(self, name: str) -> str:
        value = self.parsed.get(name)
        return str(value) if value is not None else ""

    @property
    def body_text(self) -> str:
        message = self.parsed
        body = message.get_body(preferencelist=("plain", "html"))
        if body is None:
            return ""
        return str(body.get_content())

    def has_flag(self, flag: str) -> bool:
        wanted = flag.lower()
        return any(existing.lower() == wanted for existing in self.flags)


_FLAG_KEYS = {
    "SEEN": ("\\Seen", True),
    "UNSEEN": ("\\Seen", False),
    "FLAGGED": ("\\Flagged", True),
    "UNFLAGGED": ("\\Flagged", False),
    "DELETED": ("\\Deleted", True),
    "UNDELETED": ("\\Deleted", False),
    "ANSWERED": ("\\Answered", True),
    "UNANSWERED": ("\\Answered", False),
    "DRAFT": ("\\Draft", True),
    "UNDRAFT": ("\\Draft", False),
}
_TEXT_KEYS = {"SUBJECT": "Subject", "FROM": "From", "TO": "To", "CC": "Cc", "BCC": "Bcc"}


def _word(token: object) -> str:
    if isinstance(token, bytes):
        return token.decode("ascii")
    return str(token)


class FakeImapBackend:
    """In-memory stand-in for :class:`imapclient.IMAPClient`.

    What:
      Emulate enough of ``IMAPClient`` for imapbox's resource handle, mailbox
      orchestrator and message handles to run unmodified.

    Why:
      Provides deterministic behaviour and enables assertions on internal
      state (folders, flags, UIDs) that would be difficult against a live
      server.

    How:
      Stores folders as dictionaries of :class:`_MessageRecord` keyed by UID.
      ``use_uid`` switches FETCH/STORE/COPY addressing between UIDs and
      message numbers exactly like the real client attribute.
    """

    def __init__(
        self,
        *,
        username: str = "user",
        password: str = "pass",
        capabilities: Sequence[bytes] = (b"IMAP4REV1", b"SORT", b"THREAD=REFERENCES", b"MOVE"),
        delimiter: bytes = b".",
    ) -> None:
        self.username = username
        self.password = password
        self.delimiter = delimiter
        self._capabilities = tuple(capabilities)
        self.folders: Dict[str, Dict[int, _MessageRecord]] = {"INBOX": {}}
        self.uidnext: Dict[str, int] = {"INBOX": 1}
        self.selected: Optional[str] = None
        self.logged_in = False
        self.commands: List[str] = []
        self.folder_encode = True
        self.normalise_times = True
        self.use_uid = True

    # Session management -------------------------------------------------
    def login(self, username: str, password: str) -> bytes:
        self.commands.append("LOGIN")
        if (username, password) != (self.username, self.password):
            raise LoginError("[AUTHENTICATIONFAILED] Authentication failed.")
        self.logged_in = True
        return b"Logged in"

    def logout(self) -> bytes:
        self.commands.append("LOGOUT")
        self.logged_in = False
        self.selected = None
        return b"Logging out"

    def noop(self):
        self.commands.append("NOOP")
        return (b"NOOP completed.", [])

    def capabilities(self) -> Tuple[bytes, ...]:
        return self._capabilities

    # Seeding helpers ----------------------------------------------------
    def add_folder(self, name: str) -> None:
        self.folders.setdefault(name, {})
        self.uidnext.setdefault(name, 1)

    def add_message(
        self,
        folder: str,
        message_bytes: bytes,
        flags: Iterable[str] = (),
        internaldate: Optional[datetime] = None,
    ) -> int:
        """Store ``message_bytes`` in ``folder`` and return its UID."""

        self.add_folder(folder)
        uid = self.uidnext[folder]
        self.uidnext[folder] = uid + 1
        self.folders[folder][uid] = _MessageRecord(
            uid=uid,
            message_bytes=message_bytes,
            internaldate=internaldate or datetime.now(timezone.utc),
            flags=set(flags),
        )
        return uid

    # Folder management --------------------------------------------------
    def _require(self, folder: str, command: str) -> Dict[int, _MessageRecord]:
        if folder not in self.folders:
            raise IMAPClientError(f"{command} failed: [NONEXISTENT] Mailbox doesn't exist: {folder}")
        return self.folders[folder]

    def _current(self, command: str) -> Dict[int, _MessageRecord]:
        if self.selected is None:
            raise IMAPClientError(f"{command} failed: No mailbox selected")
        return self.folders[self.selected]

    def list_folders(self, directory: str = "", pattern: str = "*"):
        """Return ``(flags, delimiter, name)`` triples with bytes names."""

        self.commands.append("LIST")
        glob = pattern.replace("%", "*")
        entries = []
        for name in sorted(self.folders):
            if not fnmatch.fnmatchcase(name, glob):
                continue
            prefix = name + self.delimiter.decode("ascii")
            has_children = any(other.startswith(prefix) for other in self.folders)
            flags = (b"\\HasChildren",) if has_children else (b"\\HasNoChildren",)
            entries.append((flags, self.delimiter, name.encode("ascii")))
        return entries

    def create_folder(self, folder: str) -> bytes:
        self.commands.append("CREATE")
        if folder in self.folders:
            raise IMAPClientError(f"create failed: [ALREADYEXISTS] Mailbox already exists: {folder}")
        self.add_folder(folder)
        return b"Create completed."

    def delete_folder(self, folder: str) -> bytes:
        self.commands.append("DELETE")
        self._require(folder, "delete")
        del self.folders[folder]
        del self.uidnext[folder]
        if self.selected == folder:
            self.selected = None
        return b"Delete completed."

    def rename_folder(self, old_name: str, new_name: str) -> bytes:
        self.commands.append("RENAME")
        self._require(old_name, "rename")
        if new_name in self.folders:
            raise IMAPClientError(f"rename failed: [ALREADYEXISTS] Mailbox already exists: {new_name}")
        self.folders[new_name] = self.folders.pop(old_name)
        self.uidnext[new_name] = self.uidnext.pop(old_name)
        if self.selected == old_name:
            self.selected = None
        return b"Rename completed."

    def select_folder(self, folder: str, readonly: bool = False) -> Dict[bytes, object]:
        self.commands.append("SELECT")
        messages = self._require(folder, "select")
        self.selected = folder
        return {b"EXISTS": len(messages), b"UIDNEXT": self.uidnext[folder], b"READ-WRITE": not readonly}

    def folder_status(self, folder: str, what: Optional[Sequence[str]] = None) -> Dict[bytes, int]:
        self.commands.append("STATUS")
        messages = self._require(folder, "status")
        values = {
            b"MESSAGES": len(messages),
            b"RECENT": 0,
            b"UNSEEN": sum(1 for record in messages.values() if not record.has_flag("\\Seen")),
            b"UIDNEXT": self.uidnext[folder],
            b"UIDVALIDITY": 1,
        }
        wanted = [item.upper().encode("ascii") for item in (what or ("MESSAGES", "RECENT", "UIDNEXT", "UIDVALIDITY", "UNSEEN"))]
        return {key: values[key] for key in wanted}

    def expunge(self, messages=None):
        self.commands.append("EXPUNGE")
        current = self._current("expunge")
        for uid in [uid for uid, record in current.items() if record.has_flag("\\Deleted")]:
            del current[uid]
        return (b"Expunge completed.", [])

    # Addressing ---------------------------------------------------------
    def _resolve(self, messages: Union[str, bytes, int, Sequence[int]], records: Dict[int, _MessageRecord], uid: bool) -> List[int]:
        """Return UIDs addressed by a sequence set, in mailbox order."""

        ordered = sorted(records)
        if isinstance(messages, int):
            tokens = [str(messages)]
        elif isinstance(messages, (str, bytes)):
            tokens = _word(messages).split(",")
        else:
            tokens = [str(item) for item in messages]
        selected: Set[int] = set()
        highest = (ordered[-1] if uid else len(ordered)) if ordered else 0
        for token in tokens:
            lo_text, _, hi_text = token.partition(":")
            lo = highest if lo_text == "*" else int(lo_text)
            hi = lo if not hi_text else (highest if hi_text == "*" else int(hi_text))
            lo, hi = min(lo, hi), max(lo, hi)
            if uid:
                selected.update(u for u in ordered if lo <= u <= hi)
            else:
                selected.update(ordered[n - 1] for n in range(lo, hi + 1) if 1 <= n <= len(ordered))
        return [u for u in ordered if u in selected]

    # Search -------------------------------------------------------------
    def _text(self, value: object, charset: Optional[str]) -> str:
        if isinstance(value, bytes):
            return value.decode(charset or "utf-8", errors="replace")
        return str(value)

    def _eval(self, record: _MessageRecord, items: Sequence[object], pos: int, charset: Optional[str], records) -> Tuple[bool, int]:
        token = items[pos]
        if isinstance(token, (list, tuple)):
            return self._matches(record, token, charset, records), pos + 1
        key = _word(token).upper()
        pos += 1
        if key in ("ALL", "OLD"):
            return True, pos
        if key in ("RECENT", "NEW"):
            return False, pos
        if key in _FLAG_KEYS:
            flag, expected = _FLAG_KEYS[key]
            return record.has_flag(flag) == expected, pos
        if key == "NOT":
            matched, pos = self._eval(record, items, pos, charset, records)
            return not matched, pos
        if key == "OR":
            left, pos = self._eval(record, items, pos, charset, records)
            right, pos = self._eval(record, items, pos, charset, records)
            return left or right, pos
        if key in _TEXT_KEYS:
            needle = self._text(items[pos], charset).lower()
            return needle in record.header(_TEXT_KEYS[key]).lower(), pos + 1
        if key == "BODY":
            needle = self._text(items[pos], charset).lower()
            return needle in record.body_text.lower(), pos + 1
        if key == "TEXT":
            needle = self._text(items[pos], charset).lower()
            haystack = record.header_bytes.decode("utf-8", errors="replace") + record.body_text
            return needle in haystack.lower(), pos + 1
        if key == "HEADER":
            name = _word(items[pos])
            needle = self._text(items[pos + 1], charset).lower()
            return needle in record.header(name).lower(), pos + 2
        if key in ("KEYWORD", "UNKEYWORD"):
            present = record.has_flag(_word(items[pos]))
            return present if key == "KEYWORD" else not present, pos + 1
        if key == "UID":
            return record.uid in self._resolve(items[pos], records, uid=True), pos + 1
        if key in ("LARGER", "SMALLER"):
            size = len(record.message_bytes)
            limit = int(items[pos])  # type: ignore[call-overload]
            return (size > limit if key == "LARGER" else size < limit), pos + 1
        if key in ("SINCE", "BEFORE", "ON", "SENTSINCE", "SENTBEFORE", "SENTON"):
            wanted = items[pos]
            if not isinstance(wanted, date):
                raise IMAPClientError(f"SEARCH failed: BAD invalid date {wanted!r}")
            if key.startswith("SENT"):
                moment = parsedate_to_datetime(record.header("Date")) if record.header("Date") else record.internaldate
            else:
                moment = record.internaldate
            day = moment.date()
            op = key[4:] if key.startswith("SENT") else key
            if op == "SINCE":
                return day >= wanted, pos + 1
            if op == "BEFORE":
                return day < wanted, pos + 1
            return day == wanted, pos + 1
        raise IMAPClientError(f"SEARCH failed: BAD Unknown search key {key}")

    def _matches(self, record: _MessageRecord, items: Sequence[object], charset: Optional[str], records) -> bool:
        matched = True
        pos = 0
        while pos < len(items):
            result, pos = self._eval(record, items, pos, charset, records)
            matched = matched and result
        return matched

    def _filter(self, criteria, charset: Optional[str], command: str) -> List[int]:
        records = self._current(command)
        if charset is not None:
            try:
                codecs.lookup(charset)
            except LookupError as exc:
                raise IMAPClientError(f"{command} failed: [BADCHARSET] Unsupported charset {charset}") from exc
        if isinstance(criteria, (str, bytes)):
            criteria = [criteria]
        items = list(criteria) or ["ALL"]
        return [uid for uid in sorted(records) if self._matches(records[uid], items, charset, records)]

    def search(self, criteria="ALL", charset: Optional[str] = None) -> List[int]:
        self.commands.append("SEARCH")
        return self._filter(criteria, charset, "SEARCH")

    def sort(self, sort_criteria, criteria="ALL", charset: str = "utf-8") -> List[int]:
        self.commands.append("SORT")
        if b"SORT" not in self._capabilities:
            raise IMAPClientError("Server does not support SORT")
        records = self._current("SORT")
        keys = sort_criteria if isinstance(sort_criteria, str) else " ".join(sort_criteria)
        words = keys.upper().split()
        reverse = words[0] == "REVERSE"
        key = words[-1]

        def sort_key(uid: int):
            record = records[uid]
            if key == "SUBJECT":
                value: object = record.header("Subject").lower()
            elif key in ("FROM", "TO", "CC"):
                value = record.header(key.title()).lower()
            elif key == "SIZE":
                value = len(record.message_bytes)
            elif key == "DATE":
                value = parsedate_to_datetime(record.header("Date")) if record.header("Date") else record.internaldate
            elif key == "ARRIVAL":
                value = record.internaldate
            else:
                raise IMAPClientError(f"SORT failed: BAD Unknown sort key {key}")
            return (value, uid)

        return sorted(self._filter(criteria, charset, "SORT"), key=sort_key, reverse=reverse)

    def thread(self, algorithm: str = "REFERENCES", criteria="ALL", charset: str = "UTF-8"):
        """Thread by ``In-Reply-To``/``References`` in UID order."""

        self.commands.append("THREAD")
        records = self._current("THREAD")
        uids = self._filter(criteria, charset, "THREAD")
        by_id = {records[uid].header("Message-ID"): uid for uid in uids if records[uid].header("Message-ID")}
        children: Dict[int, List[int]] = {uid: [] for uid in uids}
        roots: List[int] = []
        for uid in uids:
            references = records[uid].header("References").split() or records[uid].header("In-Reply-To").split()
            parent = next((by_id[ref] for ref in reversed(references) if ref in by_id and by_id[ref] != uid), None)
            if parent is None:
                roots.append(uid)
            else:
                children[parent].append(uid)

        def render(uid: int) -> Tuple[object, ...]:
            chain: List[object] = [uid]
            kids = children[uid]
            while len(kids) == 1:
                chain.append(kids[0])
                kids = children[kids[0]]
            chain.extend(render(kid) for kid in kids)
            return tuple(chain)

        return tuple(render(uid) for uid in roots)

    # Messages -----------------------------------------------------------
    def fetch(self, messages, data, modifiers=None) -> Dict[int, Dict[bytes, object]]:
        """Return requested items keyed by UID (or message number)."""

        self.commands.append("FETCH")
        records = self._current("FETCH")
        ordered = sorted(records)
        items = [_word(item).upper() for item in ([data] if isinstance(data, (str, bytes)) else data)]
        response: Dict[int, Dict[bytes, object]] = {}
        for uid in self._resolve(messages, records, self.use_uid):
            record = records[uid]
            seq = ordered.index(uid) + 1
            payload: Dict[bytes, object] = {b"SEQ": seq, b"UID": uid}
            for item in items:
                if item == "FLAGS":
                    payload[b"FLAGS"] = tuple(flag.encode("utf-8") for flag in sorted(record.flags))
                elif item == "INTERNALDATE":
                    payload[b"INTERNALDATE"] = record.internaldate
                elif item == "RFC822.SIZE":
                    payload[b"RFC822.SIZE"] = len(record.message_bytes)
                elif item == "BODY.PEEK[HEADER]":
                    payload[b"BODY[HEADER]"] = record.header_bytes
                elif item == "BODY.PEEK[]":
                    payload[b"BODY[]"] = record.message_bytes
                elif item in ("BODY[]", "RFC822"):
                    record.flags.add("\\Seen")
                    payload[item.encode("ascii")] = record.message_bytes
            response[uid if self.use_uid else seq] = payload
        return response

    def add_flags(self, messages, flags, silent: bool = False):
        self.commands.append("STORE")
        records = self._current("STORE")
        for uid in self._resolve(messages, records, self.use_uid):
            records[uid].flags.update(_word(flag) for flag in flags)
        return None if silent else {}

    def remove_flags(self, messages, flags, silent: bool = False):
        self.commands.append("STORE")
        records = self._current("STORE")
        wanted = {_word(flag).lower() for flag in flags}
        for uid in self._resolve(messages, records, self.use_uid):
            records[uid].flags = {flag for flag in records[uid].flags if flag.lower() not in wanted}
        return None if silent else {}

    def copy(self, messages, folder: str) -> bytes:
        self.commands.append("COPY")
        records = self._current("COPY")
        if folder not in self.folders:
            raise IMAPClientError(f"COPY failed: [TRYCREATE] Mailbox doesn't exist: {folder}")
        for uid in self._resolve(messages, records, self.use_uid):
            record = records[uid]
            self.add_message(folder, record.message_bytes, record.flags, record.internaldate)
        return b"Copy completed."

    def move(self, messages, folder: str) -> bytes:
        self.commands.append("MOVE")
        if b"MOVE" not in self._capabilities:
            raise IMAPClientError("Server does not support MOVE")
        records = self._current("MOVE")
        if folder not in self.folders:
            raise IMAPClientError(f"MOVE failed: [TRYCREATE] Mailbox doesn't exist: {folder}")
        for uid in self._resolve(messages, records, self.use_uid):
            record = records.pop(uid)
            self.add_message(folder, record.message_bytes, record.flags, record.internaldate)
        return b"Move completed."

    def append(self, folder: str, msg, flags=(), msg_time: Optional[datetime] = None) -> bytes:
        self.commands.append("APPEND")
        if folder not in self.folders:
            raise IMAPClientError(f"APPEND failed: [TRYCREATE] Mailbox doesn't exist: {folder}")
        raw = msg.encode("utf-8") if isinstance(msg, str) else msg
        self.add_message(folder, raw, [_word(flag) for flag in flags], msg_time)
        return b"Append completed."
