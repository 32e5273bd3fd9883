"""Mailbox name encoding and the fully-qualified mailbox specifier.

What:
  Convert human-readable folder names to the modified UTF-7 form used on the
  wire (RFC 3501 section 5.1.3) and back, and build the ``{host[:port]}name``
  specifier that identifies a mailbox across connections.

Why:
  ``imapclient`` can encode names itself, but imapbox turns that off so the
  encoded form is an explicit, inspectable value: it appears in logs, in the
  fully-qualified specifier, and in error messages, and a bad name is rejected
  before a request is built.

How:
  Delegates the UTF-7 transform to :mod:`imapclient.imap_utf7` and wraps its
  failures in :class:`~imapbox.exceptions.EncodingError`. :class:`MailboxName`
  caches the encoded form of one raw name.

Interfaces:
  :func:`encode`, :func:`decode`, :func:`full_specifier`,
  :class:`MailboxName`.

Invariants & Safety:
  - ``decode(encode(name)) == name`` for every name that encodes.
  - The specifier only ever contains the encoded name, and omits the port
    when it is the protocol default.
"""
from __future__ import annotations

import binascii
from dataclasses import dataclass, field
from typing import Optional, Union

from imapclient import imap_utf7

from ..config.schema import DEFAULT_PLAIN_PORT, DEFAULT_SSL_PORT
from ..exceptions import EncodingError


def encode(raw: str) -> str:
    """Return the modified UTF-7 form of ``raw``.

    Raises:
      EncodingError: For empty names and for characters UTF-16 cannot carry
        (unpaired surrogates).
    """

    if not isinstance(raw, str):
        raise EncodingError(f"Mailbox name must be str, not {type(raw).__name__}")
    if not raw:
        raise EncodingError("Mailbox name must not be empty")
    try:
        encoded = imap_utf7.encode(raw)
    except UnicodeEncodeError as exc:
        raise EncodingError(f"Mailbox name {raw!r} is not representable: {exc.reason}") from exc
    return encoded.decode("ascii")


def decode(encoded: Union[str, bytes]) -> str:
    """Return the UTF-8 name for a modified UTF-7 ``encoded`` name.

    Raises:
      EncodingError: If ``encoded`` is not valid modified UTF-7.
    """

    if isinstance(encoded, str):
        try:
            encoded = encoded.encode("ascii")
        except UnicodeEncodeError as exc:
            raise EncodingError(f"Encoded mailbox name {encoded!r} is not ASCII") from exc
    try:
        return imap_utf7.decode(encoded)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise EncodingError(f"Malformed modified UTF-7 mailbox name {encoded!r}") from exc


def full_specifier(host: str, port: Optional[int], encoded: str, *, ssl: bool = True) -> str:
    """Build ``{host[:port]}encoded`` for a mailbox.

    The port is left out when it is ``None`` or the default for the transport
    (993 with SSL, 143 without).
    """

    default = DEFAULT_SSL_PORT if ssl else DEFAULT_PLAIN_PORT
    authority = host if port in (None, default) else f"{host}:{port}"
    return "{" + authority + "}" + encoded


@dataclass(frozen=True)
class MailboxName:
    """Immutable UTF-8 mailbox name with its wire encoding."""

    raw: str
    encoded: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "encoded", encode(self.raw))

    @classmethod
    def from_wire(cls, encoded: Union[str, bytes]) -> "MailboxName":
        return cls(decode(encoded))

    def full_specifier(self, host: str, port: Optional[int], *, ssl: bool = True) -> str:
        return full_specifier(host, port, self.encoded, ssl=ssl)

    def __str__(self) -> str:
        return self.raw
