"""Error taxonomy shared by every imapbox component.

What:
  Define one exception hierarchy rooted at :class:`ImapboxError` covering
  local validation failures, server rejections, stale mailbox bindings,
  missing resources, and transport problems.

Why:
  Callers need to tell "you passed a malformed sequence" apart from "the server
  said NO" and from "the connection dropped". Wrapping ``imapclient`` errors in
  domain-specific types keeps those distinctions stable regardless of which
  server is on the other end.

How:
  Plain subclasses grouped under a few intermediate bases. Protocol
  rejections carry the server's diagnostic text verbatim as their message and
  keep the originating ``imapclient`` error as ``__cause__``.

Invariants & Safety:
  - Validation errors are always raised before a request reaches the wire.
  - Nothing in the package retries after one of these is raised.
"""
from __future__ import annotations


class ImapboxError(Exception):
    """Base class for every error raised by imapbox."""


class ValidationError(ImapboxError, ValueError):
    """Input was rejected locally, before any network call."""


class ProtocolRejection(ImapboxError):
    """The server answered ``NO`` or ``BAD`` to a request."""


class EncodingError(ValidationError):
    """A mailbox name cannot be represented in modified UTF-7."""


class InvalidSearchCriteriaException(ValidationError, ProtocolRejection):
    """Search criteria, charset, or a sequence token is unusable.

    Raised locally for malformed sequence tokens and unknown charsets, and
    re-raised with the server text when the server refuses the criteria.
    """


class RenameMailboxException(ProtocolRejection):
    """A RENAME was refused; the mailbox keeps its previous name."""


class CreateMailboxException(ProtocolRejection):
    """A CREATE was refused."""


class DeleteMailboxException(ProtocolRejection):
    """A DELETE was refused."""


class MessageCopyException(ProtocolRejection):
    """A bulk COPY was refused; the source mailbox is unchanged."""


class MessageMoveException(ProtocolRejection):
    """A bulk move was refused; the source mailbox is unchanged."""


class MessageFlagException(ProtocolRejection):
    """A STORE of flags was refused."""


class AppendMessageException(ProtocolRejection):
    """An APPEND was refused."""


class ReopenMailboxException(ImapboxError):
    """The mailbox bound to this object no longer exists on the server.

    Every later operation on the same :class:`~imapbox.imap.mailbox.Mailbox`
    instance fails the same way; re-acquire the mailbox from its connection.
    """


class MessageDoesNotExistException(ImapboxError, LookupError):
    """A lazily bound message turned out to be absent."""

    def __init__(self, uid: int, mailbox: str | None = None) -> None:
        self.uid = uid
        self.mailbox = mailbox
        super().__init__(f'Message "{uid}" does not exist')


class MailboxDoesNotExistException(ImapboxError, LookupError):
    """The requested mailbox is not part of the account's folder listing."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Mailbox "{name}" does not exist')


class ConnectionException(ImapboxError):
    """The transport failed or the connection was lost."""


class AuthenticationFailedException(ConnectionException):
    """LOGIN was refused by the server."""


class RateLimitExceededException(ImapboxError):
    """More mutating actions were attempted within a minute than configured."""


__all__ = [
    "ImapboxError",
    "ValidationError",
    "ProtocolRejection",
    "EncodingError",
    "InvalidSearchCriteriaException",
    "RenameMailboxException",
    "CreateMailboxException",
    "DeleteMailboxException",
    "MessageCopyException",
    "MessageMoveException",
    "MessageFlagException",
    "AppendMessageException",
    "ReopenMailboxException",
    "MessageDoesNotExistException",
    "MailboxDoesNotExistException",
    "ConnectionException",
    "AuthenticationFailedException",
    "RateLimitExceededException",
]
