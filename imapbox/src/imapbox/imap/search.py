"""Typed IMAP search expressions.

What:
  Model SEARCH criteria as a small tree of typed predicates (text, date, flag,
  size, UID and logical composites) and render it either as protocol text or
  as the token list ``imapclient`` sends to the server.

Why:
  Hand-assembled criteria lists are positional and easy to get subtly wrong
  (an unquoted subject with spaces, a non-ASCII value without ``CHARSET``).
  A typed tree keeps the syntax rules in one place and makes charset handling
  explicit: text values are encoded here, in the caller's charset, before the
  transport ever sees them.

How:
  Every node implements :meth:`Criterion.tokens`. Leaves emit ``keyword`` and
  value tokens; text values become ``bytes`` in the requested charset (8-bit
  values are sent as literals by ``imapclient``). ``Or``/``Not``/``AllOf``
  nest operands in sub-lists, which ``imapclient`` wraps in parentheses.
  :class:`SearchExpression` is the root that callers hand to a mailbox.

Interfaces:
  :class:`SearchExpression`, the leaf classes, :class:`AllOf`, :class:`Or`,
  :class:`Not`, :func:`build_search`.

Invariants & Safety:
  - An empty expression selects every message (``ALL``).
  - Unknown charsets and values that cannot be encoded in the charset raise
    :class:`~imapbox.exceptions.InvalidSearchCriteriaException` locally.
  - Serialisation is deterministic for a given tree and charset.
"""
from __future__ import annotations

import codecs
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Union

from imapclient.datetime_util import format_criteria_date

from ..exceptions import InvalidSearchCriteriaException
from .sequence import SequenceSet, parse as parse_sequence


DEFAULT_CHARSET = "US-ASCII"

Token = Union[str, bytes, int, date, list]
TextValue = Union[str, bytes]

_QUOTE_TRIGGERS = frozenset(' "\\(){%*]')


def _normalise_charset(charset: Optional[str]) -> Optional[str]:
    if charset is None:
        return None
    try:
        codecs.lookup(charset)
    except LookupError as exc:
        raise InvalidSearchCriteriaException(f"Unknown search charset {charset!r}") from exc
    return charset


def _is_default(charset: Optional[str]) -> bool:
    return charset is None or codecs.lookup(charset).name == "ascii"


def _encode_text(value: TextValue, charset: Optional[str]) -> bytes:
    if isinstance(value, bytes):
        return value
    try:
        return value.encode(charset or "ascii")
    except UnicodeEncodeError as exc:
        raise InvalidSearchCriteriaException(
            f"Search value {value!r} cannot be encoded as {charset or DEFAULT_CHARSET}"
        ) from exc


def _is_8bit(token: Token) -> bool:
    return isinstance(token, bytes) and any(byte > 0x7F for byte in token)


def _group(tokens: List[Token]) -> List[Token]:
    # imapclient glues the closing paren onto the last item of a nested list,
    # which corrupts an 8-bit literal. Keep that item ASCII.
    if tokens and _is_8bit(tokens[-1]):
        tokens = tokens + ["ALL"]
    return tokens


def _quote(text: str) -> str:
    if text and not any(ch in _QUOTE_TRIGGERS or ord(ch) < 0x20 for ch in text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _render(tokens: Sequence[Token], charset: Optional[str]) -> str:
    parts: List[str] = []
    for token in tokens:
        if isinstance(token, list):
            parts.append("(" + _render(token, charset) + ")")
        elif isinstance(token, bytes):
            parts.append(_quote(token.decode(charset or "ascii", errors="replace")))
        elif isinstance(token, (date, datetime)):
            parts.append(format_criteria_date(token).decode("ascii"))
        else:
            parts.append(str(token))
    return " ".join(parts)


class Criterion:
    """Base class for every search predicate."""

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        raise NotImplementedError

    def is_single_key(self) -> bool:
        return True

    def iter_text(self):
        return iter(())

    def __and__(self, other: "Criterion") -> "AllOf":
        return AllOf(self, other)

    def __or__(self, other: "Criterion") -> "Or":
        return Or(self, other)

    def __invert__(self) -> "Not":
        return Not(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {_render(self.tokens('utf-8'), 'utf-8')}>"


class _FlagCriterion(Criterion):
    keyword = ""

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return [self.keyword]

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(self.keyword)


class All(_FlagCriterion):
    keyword = "ALL"


class Answered(_FlagCriterion):
    keyword = "ANSWERED"


class Unanswered(_FlagCriterion):
    keyword = "UNANSWERED"


class Deleted(_FlagCriterion):
    keyword = "DELETED"


class Undeleted(_FlagCriterion):
    keyword = "UNDELETED"


class Draft(_FlagCriterion):
    keyword = "DRAFT"


class Undraft(_FlagCriterion):
    keyword = "UNDRAFT"


class Flagged(_FlagCriterion):
    keyword = "FLAGGED"


class Unflagged(_FlagCriterion):
    keyword = "UNFLAGGED"


class Seen(_FlagCriterion):
    keyword = "SEEN"


class Unseen(_FlagCriterion):
    keyword = "UNSEEN"


class Recent(_FlagCriterion):
    keyword = "RECENT"


class New(_FlagCriterion):
    keyword = "NEW"


class Old(_FlagCriterion):
    keyword = "OLD"


class _TextCriterion(Criterion):
    keyword = ""

    def __init__(self, value: TextValue) -> None:
        if not isinstance(value, (str, bytes)):
            raise InvalidSearchCriteriaException(
                f"{type(self).__name__} expects text, got {type(value).__name__}"
            )
        self.value = value

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return [self.keyword, _encode_text(self.value, charset)]

    def iter_text(self):
        yield self.value

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.value == other.value  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((self.keyword, self.value))


class Subject(_TextCriterion):
    keyword = "SUBJECT"


class Body(_TextCriterion):
    keyword = "BODY"


class Text(_TextCriterion):
    keyword = "TEXT"


class From(_TextCriterion):
    keyword = "FROM"


class To(_TextCriterion):
    keyword = "TO"


class Cc(_TextCriterion):
    keyword = "CC"


class Bcc(_TextCriterion):
    keyword = "BCC"


class Keyword(_TextCriterion):
    """Messages carrying the custom keyword flag ``value``."""

    keyword = "KEYWORD"

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return [self.keyword, _encode_text(self.value, None)]


class Unkeyword(Keyword):
    keyword = "UNKEYWORD"


class Header(Criterion):
    """Messages whose header ``name`` contains ``value``."""

    def __init__(self, name: str, value: TextValue) -> None:
        self.name = name
        self.value = value

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return ["HEADER", _encode_text(self.name, None), _encode_text(self.value, charset)]

    def iter_text(self):
        yield self.value


class _DateCriterion(Criterion):
    keyword = ""

    def __init__(self, value: date) -> None:
        if not isinstance(value, date):
            raise InvalidSearchCriteriaException(
                f"{type(self).__name__} expects a date, got {type(value).__name__}"
            )
        self.value = value

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return [self.keyword, self.value]


class Since(_DateCriterion):
    keyword = "SINCE"


class Before(_DateCriterion):
    keyword = "BEFORE"


class On(_DateCriterion):
    keyword = "ON"


class SentSince(_DateCriterion):
    keyword = "SENTSINCE"


class SentBefore(_DateCriterion):
    keyword = "SENTBEFORE"


class SentOn(_DateCriterion):
    keyword = "SENTON"


class _SizeCriterion(Criterion):
    keyword = ""

    def __init__(self, octets: int) -> None:
        if isinstance(octets, bool) or not isinstance(octets, int) or octets < 0:
            raise InvalidSearchCriteriaException(f"Invalid message size {octets!r}")
        self.octets = octets

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return [self.keyword, self.octets]


class Larger(_SizeCriterion):
    keyword = "LARGER"


class Smaller(_SizeCriterion):
    keyword = "SMALLER"


class Uid(Criterion):
    """Restrict matches to a UID sequence set."""

    def __init__(self, ids: Union[int, str, Sequence[Union[int, str]], SequenceSet]) -> None:
        self.sequence = ids if isinstance(ids, SequenceSet) else parse_sequence(ids)

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return ["UID", self.sequence.token]


class AllOf(Criterion):
    """Conjunction; IMAP expresses it by juxtaposition."""

    def __init__(self, *children: Criterion) -> None:
        self.children: List[Criterion] = []
        for child in children:
            if isinstance(child, AllOf):
                self.children.extend(child.children)
            else:
                self.children.append(child)

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        if not self.children:
            return ["ALL"]
        out: List[Token] = []
        for child in self.children:
            out.extend(child.tokens(charset))
        return out

    def is_single_key(self) -> bool:
        return len(self.children) <= 1 and all(c.is_single_key() for c in self.children)

    def iter_text(self):
        for child in self.children:
            yield from child.iter_text()


def _operand(criterion: Criterion, charset: Optional[str]) -> List[Token]:
    tokens = criterion.tokens(charset)
    if criterion.is_single_key():
        return tokens
    return [_group(tokens)]


class Or(Criterion):
    def __init__(self, left: Criterion, right: Criterion) -> None:
        self.left = left
        self.right = right

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return ["OR", *_operand(self.left, charset), *_operand(self.right, charset)]

    def iter_text(self):
        yield from self.left.iter_text()
        yield from self.right.iter_text()


class Not(Criterion):
    def __init__(self, operand: Criterion) -> None:
        self.operand = operand

    def tokens(self, charset: Optional[str] = None) -> List[Token]:
        return ["NOT", *_operand(self.operand, charset)]

    def iter_text(self):
        yield from self.operand.iter_text()


class SearchExpression:
    """Root of a search: a conjunction of criteria.

    Conditions are appended with :meth:`add` (chainable). With no conditions the
    expression matches every message.
    """

    def __init__(self, *criteria: Criterion) -> None:
        self._root = AllOf(*criteria)

    def add(self, criterion: Criterion) -> "SearchExpression":
        self._root = AllOf(self._root, criterion)
        return self

    @property
    def criteria(self) -> List[Criterion]:
        return list(self._root.children)

    def __bool__(self) -> bool:
        return bool(self._root.children)

    def effective_charset(self, charset: Optional[str] = None) -> Optional[str]:
        """Return the charset a request should declare.

        An explicit ``charset`` wins. Otherwise ``UTF-8`` is chosen when a text
        value is non-ASCII ``str``, and ``None`` (the protocol default) when
        every value is ASCII.

        Pre-encoded 8-bit ``bytes`` need an explicit charset.

        Raises:
          InvalidSearchCriteriaException: When 8-bit ``bytes`` come without
            a charset.
        """

        charset = _normalise_charset(charset)
        if charset is not None:
            return charset
        for value in self._root.iter_text():
            if isinstance(value, bytes) and not value.isascii():
                raise InvalidSearchCriteriaException("charset required for 8-bit search values")
            if isinstance(value, str) and not value.isascii():
                return "UTF-8"
        return None

    def to_criteria(self, charset: Optional[str] = None) -> List[Token]:
        """Return the token list handed to ``IMAPClient.search``/``sort``."""

        return self._root.tokens(_normalise_charset(charset))

    def serialize(self, charset: Optional[str] = None) -> str:
        """Render the expression as IMAP search syntax.

        A ``CHARSET`` directive is prefixed when ``charset`` is given and is not
        US-ASCII.
        """

        charset = _normalise_charset(charset)
        text = _render(self._root.tokens(charset), charset)
        if _is_default(charset):
            return text
        return f"CHARSET {charset.upper()} {text}"

    __str__ = serialize

    def __repr__(self) -> str:
        return f"<SearchExpression {self.serialize('utf-8')}>"


def as_expression(criteria: Union[None, Criterion, SearchExpression]) -> SearchExpression:
    """Coerce ``criteria`` accepted by mailbox methods into an expression."""

    if criteria is None:
        return SearchExpression()
    if isinstance(criteria, SearchExpression):
        return criteria
    if isinstance(criteria, Criterion):
        return SearchExpression(criteria)
    raise InvalidSearchCriteriaException(
        f"Unsupported search criteria type {type(criteria).__name__}"
    )


_TEXT_FILTERS = {"subject": Subject, "from": From, "to": To, "body": Body, "text": Text}
_FLAG_FILTERS = {"unseen": Unseen, "seen": Seen, "flagged": Flagged, "unflagged": Unflagged}


def build_search(filters: Dict[str, object]) -> SearchExpression:
    """Convert a filter mapping into a :class:`SearchExpression`.

    What:
      Inspects ``filters`` for supported keys (``since``, ``before``,
      ``subject``, ``from``, ``to``, ``body``, ``text``, ``unseen``, ``seen``,
      ``flagged``, ``unflagged``) and appends the matching predicate for each.

    Why:
      Configuration files and simple callers describe searches as plain
      dictionaries; translating them here keeps those callers out of the
      predicate classes and rejects unsupported keys loudly.

    How:
      Skips ``None`` values, emits date predicates for ``date`` values, text
      predicates for strings, and flag predicates only when the toggle is true.

    Raises:
      InvalidSearchCriteriaException: For unknown keys or mistyped values.
    """

    expression = SearchExpression()
    for key, value in filters.items():
        if value is None:
            continue
        if key in ("since", "before"):
            if not isinstance(value, date):
                raise InvalidSearchCriteriaException(f"{key} expects a date")
            expression.add(Since(value) if key == "since" else Before(value))
        elif key in _TEXT_FILTERS:
            expression.add(_TEXT_FILTERS[key](value))  # type: ignore[arg-type]
        elif key in _FLAG_FILTERS:
            if not isinstance(value, bool):
                raise InvalidSearchCriteriaException(f"{key} expects a boolean")
            if value:
                expression.add(_FLAG_FILTERS[key]())
        else:
            raise InvalidSearchCriteriaException(f"Unsupported search filter {key!r}")
    return expression
