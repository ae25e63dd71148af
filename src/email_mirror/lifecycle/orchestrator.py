"""Trash, restore and delete, applied locally first and then on the server.

The cache change is committed before any remote work. If the remote leg then
fails, the cache change is rolled back and the operation reports failure. A
message that cannot be found on the server keeps its local change: the
operation succeeds but is reported as unreconciled.

Copying a message to another folder gives it a new UID; the cache row is
rebound to that UID so callers keep a working handle on the message.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from email_mirror.cache import OfflineCache
from email_mirror.config import FolderRoles, ImapConnectionConfig
from email_mirror.exceptions import (
    EmailMirrorError,
    FolderNotFoundError,
    Inconsistent,
    InvalidState,
    MessageNotFoundError,
)
from email_mirror.imap import (
    REMOTE_ERRORS,
    CopyOutcome,
    CopyUidStrategy,
    FolderLocator,
    ImapConnector,
    MailboxConnection,
    MessageCodec,
    MessageIdCorrelationStrategy,
    RemoteFolder,
    reconcile,
)
from email_mirror.imap.responses import FetchedMessage
from email_mirror.models import OperationResult
from email_mirror.sync import SyncEngine

logger = structlog.get_logger()

_FAILURES = (EmailMirrorError, ValueError, *REMOTE_ERRORS)

CacheFlip = Callable[[str], bool]


@dataclass(frozen=True)
class _Move:
    action: str
    sources: tuple[str, ...]
    destinations: tuple[str, ...]
    lookback: int


class LifecycleOrchestrator:
    """Applies lifecycle transitions to the cache and the server."""

    def __init__(
        self,
        cache: OfflineCache,
        sync_engine: SyncEngine,
        connector: ImapConnector | None = None,
        locator: FolderLocator | None = None,
        codec: MessageCodec | None = None,
        *,
        folder_roles: FolderRoles | None = None,
        trash_lookback: int = 5,
        restore_lookback: int = 10,
    ) -> None:
        self._cache = cache
        self._sync = sync_engine
        self._connector = connector or ImapConnector()
        self._locator = locator or FolderLocator()
        self._codec = codec or MessageCodec()
        self._roles = folder_roles or FolderRoles()
        self._trash_lookback = trash_lookback
        self._restore_lookback = restore_lookback

    def trash(self, config: ImapConnectionConfig, message_id: str) -> OperationResult:
        """Mark a message trashed and move it into a trash folder."""

        logger.info("trash_requested", message_id=message_id)
        effective_id = self._apply_local(config, message_id, self._cache.mark_trashed)
        if effective_id is None:
            logger.warning("trash_local_update_failed", message_id=message_id)
            return OperationResult(success=False, message_id=message_id)

        move = _Move("trash", self._roles.search_order, self._roles.trash, self._trash_lookback)
        return self._move(config, message_id, effective_id, move, rollback=self._cache.unmark_trashed)

    def restore(self, config: ImapConnectionConfig, message_id: str) -> OperationResult:
        """Clear a message's trashed flag and move it back to the inbox."""

        logger.info("restore_requested", message_id=message_id)
        effective_id = self._apply_local(config, message_id, self._cache.unmark_trashed)
        if effective_id is None:
            logger.warning("restore_local_update_failed", message_id=message_id)
            return OperationResult(success=False, message_id=message_id)

        move = _Move("restore", self._roles.trash, self._roles.inbox, self._restore_lookback)
        return self._move(config, message_id, effective_id, move, rollback=self._cache.mark_trashed)

    def permanently_delete(self, config: ImapConnectionConfig, message_id: str) -> bool:
        """Delete a trashed message from the cache, then from the server.

        The local delete is authoritative; a failed remote delete is logged
        and does not change the result.
        """

        logger.info("permanent_delete_requested", message_id=message_id)
        try:
            self._require_trashed(message_id)
        except InvalidState as exc:
            logger.warning("permanent_delete_rejected", message_id=message_id, error=str(exc))
            return False

        if not self._cache.permanently_delete(message_id):
            logger.warning("permanent_delete_local_failed", message_id=message_id)
            return False

        try:
            uid = int(message_id)
            with self._connector.connect(config) as connection:
                folder, _ = self._locator.locate_message(connection, self._roles.trash, uid, readonly=False)
                folder.mark_deleted(uid)
                folder.expunge()
            logger.info("permanent_delete_remote_complete", message_id=message_id, folder=folder.name)
        except MessageNotFoundError:
            logger.warning("permanent_delete_not_on_server", message_id=message_id)
        except _FAILURES as exc:
            logger.error("permanent_delete_remote_failed", message_id=message_id, error=str(exc))

        return True

    def delete(self, config: ImapConnectionConfig, message_id: str) -> bool:
        """Delete a message outright, keeping a copy in the trash folder.

        Any failure reports False; remote steps already taken are not undone.
        """

        logger.info("delete_requested", message_id=message_id)
        try:
            uid = int(message_id)
            with self._connector.connect(config) as connection:
                source, _ = self._locator.locate_message(
                    connection, self._roles.search_order, uid, readonly=False
                )
                trash_name = self._find_trash(connection)
                if trash_name is None:
                    logger.warning("delete_no_trash_folder", message_id=message_id)
                elif source.same_folder(trash_name):
                    logger.debug("delete_already_in_trash", message_id=message_id, folder=source.name)
                else:
                    source.copy_to(uid, trash_name)
                    logger.debug("delete_copied_to_trash", message_id=message_id, folder=trash_name)
                source.mark_deleted(uid)
                source.expunge()
        except _FAILURES as exc:
            logger.exception("delete_failed", message_id=message_id, error=str(exc))
            return False

        if not self._cache.permanently_delete(message_id):
            logger.warning("delete_local_remove_failed", message_id=message_id)
        logger.info("delete_complete", message_id=message_id)
        return True

    def _require_trashed(self, message_id: str) -> None:
        if not self._cache.is_trashed(message_id):
            raise InvalidState(f"Message {message_id} is not in the trash")

    def _find_trash(self, connection: MailboxConnection) -> str | None:
        try:
            return self._locator.find_existing(connection, self._roles.trash)
        except FolderNotFoundError:
            return None

    def _apply_local(self, config: ImapConnectionConfig, message_id: str, flip: CacheFlip) -> str | None:
        """Flip the cache flag, hydrating the row from the server if needed.

        Returns:
            The cache id the flag was applied to, or None.
        """

        if flip(message_id):
            return message_id

        logger.info("lifecycle_hydrating", message_id=message_id)
        cached = self._cache.load_by_id(message_id)
        if cached is None:
            fetched = self._sync.fetch_remote(config, message_id)
            if fetched is None:
                logger.warning("lifecycle_hydration_failed", message_id=message_id)
                return None
            self._cache.upsert_batch([fetched])
            cached = fetched

        if cached.id != message_id:
            logger.debug("lifecycle_hydrated_as", message_id=message_id, cache_id=cached.id)
        return cached.id if flip(cached.id) else None

    def _move(
        self,
        config: ImapConnectionConfig,
        message_id: str,
        effective_id: str,
        move: _Move,
        rollback: CacheFlip,
    ) -> OperationResult:
        try:
            with self._connector.connect(config) as connection:
                uid = int(effective_id)
                source, preview = self._locate_source(connection, uid, move)
                destination = self._locate_destination(connection, move)

                if source.same_folder(destination):
                    logger.info(f"{move.action}_already_in_place", message_id=effective_id, folder=destination)
                    return OperationResult(success=True, message_id=effective_id)

                new_uid = self._copy(connection, source, uid, preview, destination, move.lookback)
                reconciled = new_uid is not None
                if new_uid is None:
                    logger.warning(f"{move.action}_uid_unreconciled", message_id=effective_id, folder=destination)
                elif self._cache.rebind_id(effective_id, str(new_uid)):
                    effective_id = str(new_uid)
                else:
                    reconciled = False
                    logger.warning(f"{move.action}_rebind_failed", message_id=effective_id, new_id=new_uid)

                source.mark_deleted(uid)
                source.expunge()

        except Inconsistent as exc:
            logger.warning(f"{move.action}_remote_unconfirmed", message_id=effective_id, error=str(exc))
            return OperationResult(success=True, message_id=effective_id, reconciled=False)
        except _FAILURES as exc:
            logger.exception(f"{move.action}_remote_failed", message_id=effective_id, error=str(exc))
            self._roll_back(rollback, effective_id, message_id, move.action)
            return OperationResult(success=False, message_id=effective_id)

        logger.info(f"{move.action}_complete", message_id=effective_id, folder=destination, reconciled=reconciled)
        return OperationResult(success=True, message_id=effective_id, reconciled=reconciled)

    def _locate_source(
        self, connection: MailboxConnection, uid: int, move: _Move
    ) -> tuple[RemoteFolder, FetchedMessage]:
        try:
            return self._locator.locate_message(connection, move.sources, uid, readonly=False)
        except MessageNotFoundError as exc:
            raise Inconsistent(f"Message UID {uid} not found on server; changed locally only") from exc

    def _locate_destination(self, connection: MailboxConnection, move: _Move) -> str:
        try:
            return self._locator.find_existing(connection, move.destinations)
        except FolderNotFoundError as exc:
            raise Inconsistent(f"No {move.action} destination folder on server; changed locally only") from exc

    def _copy(
        self,
        connection: MailboxConnection,
        source: RemoteFolder,
        uid: int,
        preview: FetchedMessage,
        destination: str,
        lookback: int,
    ) -> int | None:
        message_id_header = self._codec.message_id_of(preview)
        try:
            uid_next = connection.status(destination, "UIDNEXT")
        except REMOTE_ERRORS as exc:
            logger.debug("uidnext_read_failed", folder=destination, error=str(exc))
            uid_next = None

        copyuid = source.copy_to(uid, destination)
        outcome = CopyOutcome(
            source_uid=uid,
            destination=destination,
            copyuid=copyuid,
            uid_next_before=uid_next,
            message_id=message_id_header,
        )
        strategies = (CopyUidStrategy(), MessageIdCorrelationStrategy(self._codec, lookback))
        return reconcile(strategies, connection, outcome)

    def _roll_back(self, rollback: CacheFlip, effective_id: str, message_id: str, action: str) -> None:
        if rollback(effective_id):
            logger.info(f"{action}_rolled_back", message_id=effective_id)
            return
        if effective_id != message_id and rollback(message_id):
            logger.info(f"{action}_rolled_back", message_id=message_id)
            return
        logger.error(f"{action}_rollback_failed", message_id=effective_id, original_id=message_id)
