"""Pulling recent mail from the server into the offline cache."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from email.errors import MessageError

import structlog

from email_mirror.cache import OfflineCache
from email_mirror.config import INBOX, FolderRoles, ImapConnectionConfig
from email_mirror.exceptions import EmailMirrorError, FolderNotFoundError, RemoteUnavailable
from email_mirror.imap import REMOTE_ERRORS, FolderLocator, ImapConnector, MessageCodec, ProtocolError
from email_mirror.models import StoredMessage

logger = structlog.get_logger()

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def newest_first(messages: Iterable[StoredMessage]) -> list[StoredMessage]:
    """Sort by received_at descending; messages without a timestamp go last."""
    return sorted(messages, key=lambda m: m.received_at or _OLDEST, reverse=True)


def _dedupe(messages: Iterable[StoredMessage]) -> list[StoredMessage]:
    by_id: dict[str, StoredMessage] = {}
    for message in messages:
        by_id[message.id] = message
    return list(by_id.values())


class SyncEngine:
    """Fetches bounded windows of recent messages from remote folders.

    Bulk syncs fetch headers and flags only; full message bytes are pulled
    one message at a time through :meth:`fetch_remote`.
    """

    def __init__(
        self,
        cache: OfflineCache,
        connector: ImapConnector | None = None,
        locator: FolderLocator | None = None,
        codec: MessageCodec | None = None,
        *,
        folder_roles: FolderRoles | None = None,
        batch_size: int = 100,
        sent_limit: int = 50,
    ) -> None:
        self._cache = cache
        self._connector = connector or ImapConnector()
        self._locator = locator or FolderLocator()
        self._codec = codec or MessageCodec()
        self._roles = folder_roles or FolderRoles()
        self._batch_size = batch_size
        self._sent_limit = sent_limit

    def sync_folder(self, config: ImapConnectionConfig, name: str = INBOX) -> list[StoredMessage]:
        """Fetch the most recent ``batch_size`` messages of a folder.

        For the inbox, unread messages outside that window are fetched too.

        Returns:
            Deduplicated messages, newest first, without raw bytes.

        Raises:
            RemoteUnavailable: If the server cannot be reached or fails mid-sync.
            FolderNotFoundError: If the folder cannot be opened.
        """

        with self._connector.connect(config) as connection:
            try:
                folder = connection.open_folder(name, readonly=True)
            except ProtocolError as exc:
                raise FolderNotFoundError(f"Cannot open folder {name}: {exc}") from exc
            except OSError as exc:
                raise RemoteUnavailable(f"Connection lost while opening {name}: {exc}") from exc

            try:
                count = folder.message_count()
                if count == 0:
                    logger.info("folder_sync_empty", folder=name)
                    return []

                start = max(1, count - self._batch_size + 1)
                fetched = folder.fetch_window(start, count)
                if name.upper() == INBOX:
                    unseen = folder.search_unseen()
                    fetched.extend(folder.fetch_previews(unseen))
            except REMOTE_ERRORS as exc:
                raise RemoteUnavailable(f"Sync of {name} failed: {exc}") from exc

        messages = newest_first(_dedupe(self._codec.decode(item) for item in fetched))
        logger.info("folder_synced", folder=name, window_start=start, count=count, messages=len(messages))
        return messages

    def sync_sent_folder(self, config: ImapConnectionConfig) -> list[StoredMessage]:
        """List the most recent sent messages, addressed by recipient.

        Sent mail is not cached. A message that fails to decode is skipped.
        """

        with self._connector.connect(config) as connection:
            folder = self._locator.locate(connection, self._roles.sent, readonly=True)
            try:
                count = folder.message_count()
                if count == 0:
                    return []
                fetched = folder.fetch_window(max(1, count - self._sent_limit + 1), count)
            except REMOTE_ERRORS as exc:
                raise RemoteUnavailable(f"Sync of {folder.name} failed: {exc}") from exc

        messages: list[StoredMessage] = []
        for item in fetched:
            try:
                messages.append(self._codec.decode_sent_preview(item))
            except (ValueError, MessageError) as exc:
                logger.warning("sent_message_decode_failed", uid=item.uid, error=str(exc))

        logger.info("sent_folder_synced", folder=folder.name, messages=len(messages))
        return newest_first(messages)

    def refresh(self, config: ImapConnectionConfig, name: str = INBOX) -> bool:
        """Sync a folder and upsert the result into the cache."""
        try:
            messages = self.sync_folder(config, name)
        except EmailMirrorError as exc:
            logger.warning("folder_refresh_failed", folder=name, error=str(exc))
            return False
        return self._cache.upsert_batch(messages)

    def fetch_remote(
        self,
        config: ImapConnectionConfig,
        message_id: str,
        mark_seen: bool = False,
    ) -> StoredMessage | None:
        """Fetch one full message by UID from whichever folder holds it.

        Args:
            config: Connection parameters.
            message_id: Decimal UID.
            mark_seen: Set ``\\Seen`` on the server, as opening a message does.

        Returns:
            The decoded message with raw bytes, or None when it cannot be found
            or fetched.
        """

        if not message_id.isdigit():
            logger.warning("remote_fetch_invalid_id", message_id=message_id)
            return None

        uid = int(message_id)
        try:
            with self._connector.connect(config) as connection:
                folder, _ = self._locator.locate_message(
                    connection, self._roles.search_order, uid, readonly=not mark_seen
                )
                fetched = folder.fetch_message(uid)
                if fetched is None:
                    logger.warning("remote_fetch_empty", message_id=message_id, folder=folder.name)
                    return None
                if mark_seen and not fetched.seen:
                    folder.mark_seen(uid)
                folder_name = folder.name
        except (EmailMirrorError, *REMOTE_ERRORS) as exc:
            logger.warning("remote_fetch_failed", message_id=message_id, error=str(exc))
            return None

        stored = self._codec.decode(fetched)
        if mark_seen:
            stored = stored.model_copy(update={"unread": False})
        logger.info("remote_message_fetched", message_id=message_id, folder=folder_name)
        return stored
