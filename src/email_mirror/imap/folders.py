"""Folder discovery across provider-specific naming schemes."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from email_mirror.exceptions import FolderNotFoundError, MessageNotFoundError, RemoteUnavailable
from email_mirror.imap.client import MailboxConnection, ProtocolError, RemoteFolder
from email_mirror.imap.responses import FetchedMessage

logger = structlog.get_logger()

FolderPredicate = Callable[[RemoteFolder], bool]


class FolderLocator:
    """Finds the first usable folder among ordered candidate names.

    A candidate that does not exist, cannot be opened, or fails the predicate
    is skipped; protocol errors on one candidate never abort the search. Running
    out of candidates is reported as :class:`FolderNotFoundError`; a broken
    transport stops the search with :class:`RemoteUnavailable`.
    """

    def locate(
        self,
        connection: MailboxConnection,
        candidates: Iterable[str],
        predicate: FolderPredicate | None = None,
        readonly: bool = True,
    ) -> RemoteFolder:
        """Open and return the first existing candidate satisfying ``predicate``.

        The returned folder is left selected in the requested mode.
        """

        tried: list[str] = []
        for name in candidates:
            tried.append(name)
            try:
                if not connection.folder_exists(name):
                    continue
                folder = connection.open_folder(name, readonly=readonly)
                if predicate is None or predicate(folder):
                    logger.debug("imap_folder_located", folder=name, readonly=readonly)
                    return folder
            except ProtocolError as exc:
                logger.debug("imap_folder_candidate_failed", folder=name, error=str(exc))
            except OSError as exc:
                raise RemoteUnavailable(f"Connection lost while opening {name}: {exc}") from exc
            connection.release()

        raise FolderNotFoundError(f"None of the folders {tried} matched")

    def locate_message(
        self,
        connection: MailboxConnection,
        candidates: Iterable[str],
        uid: int,
        readonly: bool = True,
    ) -> tuple[RemoteFolder, FetchedMessage]:
        """Find the folder holding ``uid`` and the message's preview metadata.

        Raises:
            MessageNotFoundError: If no candidate folder holds the UID.
        """

        found: list[FetchedMessage] = []

        def holds_uid(folder: RemoteFolder) -> bool:
            matches = [m for m in folder.fetch_previews([uid]) if m.uid == uid]
            found[:] = matches[:1]
            return bool(matches)

        try:
            folder = self.locate(connection, candidates, holds_uid, readonly=readonly)
        except FolderNotFoundError as exc:
            raise MessageNotFoundError(f"Message UID {uid} not found in any folder") from exc
        return folder, found[0]

    def find_existing(self, connection: MailboxConnection, candidates: Iterable[str]) -> str:
        """Return the first candidate name that exists, without selecting it."""
        tried: list[str] = []
        for name in candidates:
            tried.append(name)
            try:
                if connection.folder_exists(name):
                    return name
            except ProtocolError as exc:
                logger.debug("imap_folder_candidate_failed", folder=name, error=str(exc))
            except OSError as exc:
                raise RemoteUnavailable(f"Connection lost while listing {name}: {exc}") from exc
        raise FolderNotFoundError(f"None of the folders {tried} exist")
