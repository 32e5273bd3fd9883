"""Value types for mailbox status, LIST attributes, sort keys and dates."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from ..exceptions import ValidationError


class StatusFlag(enum.IntFlag):
    """Items that can be requested from STATUS."""

    MESSAGES = 1
    RECENT = 2
    UNSEEN = 4
    UIDNEXT = 8
    UIDVALIDITY = 16
    ALL = MESSAGES | RECENT | UNSEEN | UIDNEXT | UIDVALIDITY


_STATUS_ITEMS: Tuple[Tuple[StatusFlag, str], ...] = (
    (StatusFlag.MESSAGES, "MESSAGES"),
    (StatusFlag.RECENT, "RECENT"),
    (StatusFlag.UNSEEN, "UNSEEN"),
    (StatusFlag.UIDNEXT, "UIDNEXT"),
    (StatusFlag.UIDVALIDITY, "UIDVALIDITY"),
)


def status_items(flags: StatusFlag) -> Tuple[str, ...]:
    """Return the STATUS item names selected by ``flags``, in protocol order."""

    items = tuple(name for flag, name in _STATUS_ITEMS if flags & flag)
    if not items:
        raise ValidationError("At least one status item must be requested")
    return items


@dataclass(frozen=True)
class MailboxStatus:
    """Snapshot of a STATUS reply.

    Fields that were not requested are ``None``; a zero is always a real
    server value.
    """

    flags: StatusFlag
    messages: Optional[int] = None
    recent: Optional[int] = None
    unseen: Optional[int] = None
    uidnext: Optional[int] = None
    uidvalidity: Optional[int] = None

    @classmethod
    def from_reply(cls, flags: StatusFlag, reply: Mapping[Union[bytes, str], int]) -> "MailboxStatus":
        values: Dict[str, int] = {}
        for key, value in reply.items():
            name = key.decode("ascii") if isinstance(key, bytes) else str(key)
            values[name.lower()] = int(value)
        requested = {name.lower() for name in status_items(flags)}
        return cls(flags=flags, **{name: values.get(name) for name in requested})

    def has(self, field_name: str) -> bool:
        return getattr(self, field_name) is not None


class MailboxAttribute(enum.IntFlag):
    """LIST attributes of a mailbox."""

    NONE = 0
    NOINFERIORS = 1
    NOSELECT = 2
    MARKED = 4
    UNMARKED = 8
    REFERRAL = 16
    HASCHILDREN = 32
    HASNOCHILDREN = 64


_ATTRIBUTE_NAMES = {
    "\\noinferiors": MailboxAttribute.NOINFERIORS,
    "\\noselect": MailboxAttribute.NOSELECT,
    "\\nonexistent": MailboxAttribute.NOSELECT,
    "\\marked": MailboxAttribute.MARKED,
    "\\unmarked": MailboxAttribute.UNMARKED,
    "\\referral": MailboxAttribute.REFERRAL,
    "\\remote": MailboxAttribute.REFERRAL,
    "\\haschildren": MailboxAttribute.HASCHILDREN,
    "\\hasnochildren": MailboxAttribute.HASNOCHILDREN,
}


def parse_attributes(flags: Iterable[Union[bytes, str]]) -> MailboxAttribute:
    """Map LIST flags (``b'\\HasNoChildren'``...) to a bitmask; unknown ones are ignored."""

    result = MailboxAttribute.NONE
    for flag in flags:
        name = flag.decode("ascii", errors="replace") if isinstance(flag, bytes) else str(flag)
        result |= _ATTRIBUTE_NAMES.get(name.lower(), MailboxAttribute.NONE)
    return result


class SortKey(str, enum.Enum):
    """Server-side SORT keys (RFC 5256)."""

    DATE = "DATE"
    ARRIVAL = "ARRIVAL"
    FROM = "FROM"
    SUBJECT = "SUBJECT"
    TO = "TO"
    CC = "CC"
    SIZE = "SIZE"

    def criteria(self, descending: bool = False) -> str:
        return f"REVERSE {self.value}" if descending else self.value


_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def to_utc(moment: datetime) -> datetime:
    """Return ``moment`` in UTC; naive datetimes are taken to already be UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_internal_date(moment: datetime) -> str:
    """Render ``moment`` as a fixed-width INTERNALDATE in UTC.

    ``datetime(2012, 1, 3, 10, 30, 3, tzinfo=+01:00)`` becomes
    ``" 3-Jan-2012 09:30:03 +0000"`` (day padded with a space).
    """

    utc = to_utc(moment)
    return (
        f"{utc.day:2d}-{_MONTHS[utc.month - 1]}-{utc.year:04d} "
        f"{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d} +0000"
    )
