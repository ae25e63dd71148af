"""IMAP connection and folder handles built on :mod:`imaplib`.

Every public operation of this package opens its own connection through
:meth:`ImapConnector.connect`, works through :class:`RemoteFolder` handles and
releases everything on exit. A connection has at most one folder selected at a
time; folder handles re-select their folder lazily before each command, so
several handles can be used alternately on one connection.
"""

from __future__ import annotations

import imaplib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from email_mirror.config import ImapConnectionConfig
from email_mirror.exceptions import AuthenticationError, RemoteUnavailable
from email_mirror.imap.responses import (
    FLAG_DELETED,
    FLAG_SEEN,
    FetchedMessage,
    parse_copyuid,
    parse_fetch,
    parse_search,
    parse_status,
    quote_folder,
)
from email_mirror.utils import retry_on_failure

logger = structlog.get_logger()

# imaplib.IMAP4.abort and .readonly both derive from .error
ProtocolError = imaplib.IMAP4.error

# raised by imaplib for a rejected command or a broken transport
REMOTE_ERRORS: tuple[type[Exception], ...] = (ProtocolError, OSError)

ClientFactory = Callable[[ImapConnectionConfig], Any]

PREVIEW_HEADER_FIELDS = "FROM TO SUBJECT DATE MESSAGE-ID"
PREVIEW_ITEMS = f"(UID FLAGS INTERNALDATE BODY.PEEK[HEADER.FIELDS ({PREVIEW_HEADER_FIELDS})])"
FULL_ITEMS = "(UID FLAGS INTERNALDATE BODY.PEEK[])"


def default_client_factory(config: ImapConnectionConfig) -> imaplib.IMAP4:
    """Open a raw imaplib connection (not yet authenticated)."""
    if config.ssl:
        return imaplib.IMAP4_SSL(config.host, config.port, timeout=config.timeout)
    return imaplib.IMAP4(config.host, config.port, timeout=config.timeout)


def _check(command: str, typ: str, data: list[Any]) -> list[Any]:
    if typ != "OK":
        detail = b" ".join(d for d in data if isinstance(d, bytes)).decode("utf-8", "replace")
        raise ProtocolError(f"{command} failed: {typ} {detail}".strip())
    return data


class ImapConnector:
    """Creates authenticated, operation-scoped IMAP connections."""

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or default_client_factory

    @contextmanager
    def connect(self, config: ImapConnectionConfig) -> Iterator[MailboxConnection]:
        """Connect, log in, and yield a connection that is always closed.

        Raises:
            AuthenticationError: If the server rejects the credentials.
            RemoteUnavailable: If the server cannot be reached.
        """

        client = self._open(config)
        connection = MailboxConnection(client)
        try:
            yield connection
        finally:
            connection.close()

    def _open(self, config: ImapConnectionConfig) -> Any:
        opener = retry_on_failure(
            max_retries=config.connect_retries,
            delay=0.5,
            exceptions=(OSError,),
        )(self._client_factory)

        logger.debug("imap_connecting", host=config.host, port=config.port, ssl=config.ssl)
        try:
            client = opener(config)
        except (OSError, ProtocolError) as exc:
            logger.warning("imap_connect_failed", host=config.host, error=str(exc))
            raise RemoteUnavailable(f"Unable to connect to {config.host}:{config.port}: {exc}") from exc

        try:
            client.login(config.username, config.password.get_secret_value())
        except ProtocolError as exc:
            _quiet_logout(client)
            logger.warning("imap_login_failed", host=config.host, username=config.username)
            raise AuthenticationError(f"IMAP login rejected for {config.username}") from exc
        except OSError as exc:
            _quiet_logout(client)
            raise RemoteUnavailable(f"Connection to {config.host} dropped during login: {exc}") from exc

        return client


def _quiet_logout(client: Any) -> None:
    try:
        client.logout()
    except (OSError, ProtocolError) as exc:
        logger.debug("imap_logout_failed", error=str(exc))


class MailboxConnection:
    """One authenticated IMAP connection."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._selected: tuple[str, bool] | None = None
        self._exists = 0

    @property
    def client(self) -> Any:
        return self._client

    def has_capability(self, name: str) -> bool:
        caps = getattr(self._client, "capabilities", ()) or ()
        return name.upper() in {str(c).upper() for c in caps}

    def folder_exists(self, name: str) -> bool:
        typ, data = self._client.list('""', quote_folder(name))
        return typ == "OK" and any(entry for entry in data or [])

    def select(self, name: str, readonly: bool = True, *, force: bool = False) -> int:
        """Select ``name`` unless it is already selected in the same mode.

        Returns:
            The folder's message count as of the last SELECT.
        """

        if not force and self._selected == (name, readonly):
            return self._exists

        self._selected = None
        typ, data = self._client.select(quote_folder(name), readonly=readonly)
        _check(f"SELECT {name}", typ, data)
        self._selected = (name, readonly)
        try:
            self._exists = int(data[0])
        except (TypeError, ValueError, IndexError):
            self._exists = 0
        return self._exists

    def status(self, name: str, item: str) -> int | None:
        typ, data = self._client.status(quote_folder(name), f"({item})")
        _check(f"STATUS {name}", typ, data)
        return parse_status(data, item)

    def open_folder(self, name: str, readonly: bool = True) -> RemoteFolder:
        """Select ``name`` and return a handle bound to it."""
        self.select(name, readonly, force=True)
        return RemoteFolder(self, name, readonly)

    def release(self) -> None:
        """Deselect the current folder without expunging."""
        if self._selected is None:
            return
        name, readonly = self._selected
        self._selected = None
        try:
            if self.has_capability("UNSELECT"):
                self._client.unselect()
                return
            if not readonly:
                # CLOSE expunges a read-write selection; EXAMINE first
                typ, data = self._client.select(quote_folder(name), readonly=True)
                _check(f"EXAMINE {name}", typ, data)
            self._client.close()
        except (OSError, ProtocolError) as exc:
            logger.debug("imap_folder_release_failed", folder=name, error=str(exc))

    def close(self) -> None:
        self.release()
        try:
            self._client.logout()
        except (OSError, ProtocolError) as exc:
            logger.warning("imap_logout_failed", error=str(exc))


class RemoteFolder:
    """Handle on one folder of a :class:`MailboxConnection`."""

    def __init__(self, connection: MailboxConnection, name: str, readonly: bool) -> None:
        self._connection = connection
        self.name = name
        self.readonly = readonly

    def __repr__(self) -> str:
        mode = "ro" if self.readonly else "rw"
        return f"RemoteFolder({self.name!r}, {mode})"

    @property
    def _client(self) -> Any:
        self._connection.select(self.name, self.readonly)
        return self._connection.client

    def same_folder(self, other_name: str) -> bool:
        return self.name.lower() == other_name.lower()

    def message_count(self) -> int:
        return self._connection.select(self.name, self.readonly, force=True)

    def uid_next(self) -> int | None:
        """UIDNEXT watermark: the UID the next appended message will get."""
        return self._connection.status(self.name, "UIDNEXT")

    def fetch_window(self, start: int, end: int) -> list[FetchedMessage]:
        """Fetch preview metadata for sequence numbers ``start..end``."""
        typ, data = self._client.fetch(f"{start}:{end}", PREVIEW_ITEMS)
        return parse_fetch(_check("FETCH", typ, data))

    def fetch_previews(self, uids: list[int]) -> list[FetchedMessage]:
        """Fetch preview metadata for the given UIDs."""
        if not uids:
            return []
        typ, data = self._client.uid("FETCH", ",".join(str(u) for u in uids), PREVIEW_ITEMS)
        return parse_fetch(_check("UID FETCH", typ, data))

    def fetch_message(self, uid: int) -> FetchedMessage | None:
        """Fetch the full message without setting ``\\Seen``."""
        typ, data = self._client.uid("FETCH", str(uid), FULL_ITEMS)
        for message in parse_fetch(_check("UID FETCH", typ, data), full=True):
            if message.uid == uid:
                return message
        return None

    def contains(self, uid: int) -> bool:
        return uid in self._search(f"UID {uid}")

    def search_unseen(self) -> list[int]:
        return self._search("UNSEEN")

    def uids_from(self, start_uid: int) -> list[int]:
        return self._search(f"UID {max(1, start_uid)}:*")

    def copy_to(self, uid: int, destination: str) -> dict[int, int]:
        """Copy one message to ``destination``.

        Returns:
            The UIDPLUS source-to-destination UID mapping reported by the
            server; empty when the server does not report one.
        """

        client = self._client
        client.response("COPYUID")  # drop any stale code
        typ, data = client.uid("COPY", str(uid), quote_folder(destination))
        _check(f"UID COPY {destination}", typ, data)
        _, code = client.response("COPYUID")
        return parse_copyuid(code) or parse_copyuid(data)

    def add_flag(self, uid: int, flag: str) -> None:
        typ, data = self._client.uid("STORE", str(uid), "+FLAGS", f"({flag})")
        _check("UID STORE", typ, data)

    def mark_seen(self, uid: int) -> None:
        self.add_flag(uid, FLAG_SEEN)

    def mark_deleted(self, uid: int) -> None:
        self.add_flag(uid, FLAG_DELETED)

    def expunge(self) -> None:
        typ, data = self._client.expunge()
        _check("EXPUNGE", typ, data)

    def close(self) -> None:
        self._connection.release()

    def _search(self, criteria: str) -> list[int]:
        typ, data = self._client.uid("SEARCH", None, criteria)
        return parse_search(_check("UID SEARCH", typ, data))
