"""Pytest fixtures for unit tests requiring the IMAP fake.

What:
  Make ``tests/unit`` importable and expose fixtures that connect imapbox to
  a fresh :class:`FakeImapBackend`.

Why:
  Mailbox, message and connection tests drive the real resource handle; the
  fake keeps them offline and lets tests assert on server state.

How:
  Monkeypatch ``imapbox.imap.resource.IMAPClient`` so the handle receives the
  fake backend, then open a :class:`Connection` through :func:`connect` so the
  login/logout flow mirrors production.

Interfaces:
  :func:`backend`, :func:`server_config`, :func:`imap_connection`,
  :func:`mailbox` (pytest fixtures).

Invariants & Safety:
  - Each test receives a fresh backend instance.
  - The test account listens on a non-default port so full specifiers carry it.
"""

import sys
from pathlib import Path

import pytest

from imapbox.config.schema import ServerConfig
from imapbox.imap import connect

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeImapBackend, make_message

TEST_PORT = 10993


@pytest.fixture
def backend() -> FakeImapBackend:
    return FakeImapBackend()


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(host="imap.example.test", port=TEST_PORT, username="user", password="pass")


@pytest.fixture
def patched_client(monkeypatch: pytest.MonkeyPatch, backend: FakeImapBackend) -> FakeImapBackend:
    monkeypatch.setattr("imapbox.imap.resource.IMAPClient", lambda host, **kwargs: backend)
    return backend


@pytest.fixture
def imap_connection(patched_client: FakeImapBackend, server_config: ServerConfig):
    """Yield ``(Connection, FakeImapBackend)`` for an authenticated session."""

    with connect(server_config) as connection:
        yield connection, patched_client


@pytest.fixture
def mailbox(imap_connection):
    """A folder named with non-ASCII characters holding three messages.

    UIDs 1 to 3 carry the subjects ``Message 1`` to ``Message 3``.
    """

    connection, backend = imap_connection
    created = connection.create_mailbox("Tëst Ö")
    for index in (1, 2, 3):
        backend.add_message(created.encoded_name, make_message(f"Message {index}"))
    return created
