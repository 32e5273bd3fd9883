"""Parse and validate message id inputs into IMAP sequence sets.

What:
  Normalise the id shapes callers pass to bulk operations (a single integer,
  a comma/range string such as ``"1,2,4:6"`` or ``"10:*"``, or a sequence of
  those) into one validated wire token.

Why:
  Bulk STORE/COPY/FETCH commands take one sequence-set argument. Validating
  locally means a typo such as ``"-1:x"`` fails with a clear error instead of a
  server ``BAD`` halfway through a workflow, and every later layer deals with
  one canonical representation.

How:
  Split every input into comma-separated parts, check each part against the
  ``number`` / ``number:number`` grammar (``*`` allowed as a bound), and join
  the parts back with commas preserving their order.

Interfaces:
  :class:`SequenceSet`, :func:`parse`.

Invariants & Safety:
  - A :class:`SequenceSet` is never empty and never mixes addressing modes.
  - Overlaps are not de-duplicated; the server handles them.
  - Ranges beyond the mailbox size are legal and simply match nothing.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Union

from ..exceptions import InvalidSearchCriteriaException


IdInput = Union[int, str, bytes, Sequence[Union[int, str]], "SequenceSet"]

_PART = re.compile(r"^(?:[1-9][0-9]*|\*)(?::(?:[1-9][0-9]*|\*))?$")


@dataclass(frozen=True)
class SequenceSet:
    """A validated sequence-set token and its addressing mode."""

    token: str
    uid: bool = True

    def __str__(self) -> str:
        return self.token

    def parts(self) -> List[str]:
        return self.token.split(",")


def _split(value: object) -> Iterable[str]:
    if isinstance(value, bool):
        raise InvalidSearchCriteriaException(f"Invalid message id {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidSearchCriteriaException(f"Invalid message id {value!r}")
        yield str(value)
        return
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="replace")
    if not isinstance(value, str):
        raise InvalidSearchCriteriaException(
            f"Unsupported message id type {type(value).__name__}"
        )
    for part in value.split(","):
        part = part.strip()
        if not _PART.match(part):
            raise InvalidSearchCriteriaException(
                f"Invalid message sequence token {part!r} in {value!r}"
            )
        yield part


def parse(value: IdInput, *, uid: bool = True) -> SequenceSet:
    """Normalise ``value`` into a :class:`SequenceSet`.

    Args:
      value: An id, a comma/range string, a sequence of such tokens, or an
        existing :class:`SequenceSet` (returned unchanged when the addressing
        mode matches).
      uid: ``True`` for UID addressing, ``False`` for message numbers.

    Raises:
      InvalidSearchCriteriaException: For empty input or malformed tokens.
    """

    if isinstance(value, SequenceSet):
        if value.uid != uid:
            raise InvalidSearchCriteriaException(
                "Cannot mix UID and message-number addressing in one request"
            )
        return value
    if isinstance(value, (str, bytes, int)):
        items: Sequence[object] = [value]
    else:
        try:
            items = list(value)
        except TypeError as exc:
            raise InvalidSearchCriteriaException(
                f"Unsupported message id type {type(value).__name__}"
            ) from exc
    parts: List[str] = []
    for item in items:
        parts.extend(_split(item))
    if not parts:
        raise InvalidSearchCriteriaException("Message sequence must not be empty")
    return SequenceSet(",".join(parts), uid=uid)
