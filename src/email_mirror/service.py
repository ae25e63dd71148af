"""Caller-facing mailbox operations.

:class:`MailboxService` binds one immutable connection config to the sync
engine, lifecycle orchestrator, offline cache and mailer. None of its methods
raise for remote or cache failures; they return empty, ``None`` or failed
results and log the cause.
"""

from __future__ import annotations

from email.errors import MessageError

import structlog

from email_mirror.cache import OfflineCache
from email_mirror.config import INBOX, ImapConnectionConfig, Settings
from email_mirror.exceptions import ConfigurationError, EmailMirrorError
from email_mirror.imap import FolderLocator, ImapConnector, MessageCodec
from email_mirror.lifecycle import LifecycleOrchestrator
from email_mirror.models import EmailDetail, EmailPreview, OperationResult, SendEmailRequest, StoredMessage
from email_mirror.smtp import SmtpMailer
from email_mirror.sync import SyncEngine
from email_mirror.utils import address_of

logger = structlog.get_logger()


class MailboxService:
    """One mailbox, one credential set."""

    def __init__(
        self,
        config: ImapConnectionConfig,
        cache: OfflineCache,
        sync_engine: SyncEngine,
        orchestrator: LifecycleOrchestrator,
        codec: MessageCodec | None = None,
        mailer: SmtpMailer | None = None,
        preview_limit: int = 50,
    ) -> None:
        self._config = config
        self._cache = cache
        self._sync = sync_engine
        self._orchestrator = orchestrator
        self._codec = codec or MessageCodec()
        self._mailer = mailer
        self._preview_limit = preview_limit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        connector: ImapConnector | None = None,
        cache: OfflineCache | None = None,
    ) -> MailboxService:
        """Wire a service from settings.

        The IMAP config is frozen here once and shared by every operation.

        Raises:
            ConfigurationError: If the IMAP host or username is missing.
        """

        config = settings.imap_connection()
        connector = connector or ImapConnector()
        cache = cache or OfflineCache.from_url(settings.database_url, preview_limit=settings.preview_limit)
        locator = FolderLocator()
        codec = MessageCodec()

        sync_engine = SyncEngine(
            cache,
            connector,
            locator,
            codec,
            folder_roles=settings.folder_roles,
            batch_size=settings.fetch_batch_size,
            sent_limit=settings.sent_fetch_limit,
        )
        orchestrator = LifecycleOrchestrator(
            cache,
            sync_engine,
            connector,
            locator,
            codec,
            folder_roles=settings.folder_roles,
            trash_lookback=settings.trash_reconcile_lookback,
            restore_lookback=settings.restore_reconcile_lookback,
        )

        mailer = None
        if settings.smtp_host:
            mailer = SmtpMailer.from_settings(settings)

        return cls(
            config,
            cache,
            sync_engine,
            orchestrator,
            codec=codec,
            mailer=mailer,
            preview_limit=settings.preview_limit,
        )

    @property
    def config(self) -> ImapConnectionConfig:
        return self._config

    @property
    def cache(self) -> OfflineCache:
        return self._cache

    def list_inbox(self) -> list[EmailPreview]:
        """Refresh the inbox, then list cached, non-trashed previews.

        Messages sent from the account's own address are left out.
        """

        refreshed = self._sync.refresh(self._config, INBOX)
        previews = self._cache.load_previews(trashed=False, limit=self._preview_limit)

        if not previews and not refreshed:
            logger.info("inbox_fallback_sync")
            try:
                messages = self._sync.sync_folder(self._config, INBOX)
            except EmailMirrorError as exc:
                logger.warning("inbox_fallback_sync_failed", error=str(exc))
                return []
            self._cache.upsert_batch(messages)
            previews = self._cache.load_previews(trashed=False, limit=self._preview_limit)

        own_address = address_of(self._config.username)
        return [p for p in previews if address_of(p.sender) != own_address]

    def list_sent(self) -> list[EmailPreview]:
        try:
            messages = self._sync.sync_sent_folder(self._config)
        except EmailMirrorError as exc:
            logger.warning("sent_listing_failed", error=str(exc))
            return []
        return [m.to_preview() for m in messages]

    def refresh(self, folder: str = INBOX) -> bool:
        """Sync one folder into the cache."""
        return self._sync.refresh(self._config, folder)

    def list_trash(self) -> list[EmailPreview]:
        return self._cache.load_previews(trashed=True, limit=self._preview_limit)

    def get_detail(self, message_id: str) -> EmailDetail | None:
        """Full detail for a message, fetching it from the server if needed.

        Opening a cached message marks it read locally. A message without raw
        bytes (or not cached at all) is fetched from the server, which marks
        it seen there, and written back to the cache.
        """

        stored = self._cache.load_by_id(message_id)
        if stored is None:
            logger.info("detail_cache_miss", message_id=message_id)
            fetched = self._sync.fetch_remote(self._config, message_id, mark_seen=True)
            if fetched is None:
                return None
            self._cache.upsert_batch([fetched])
            return self._parse(fetched)

        if stored.unread and self._cache.mark_read(message_id):
            stored = stored.model_copy(update={"unread": False})

        if not stored.has_raw:
            logger.info("detail_raw_missing", message_id=message_id)
            fetched = self._sync.fetch_remote(self._config, message_id, mark_seen=True)
            if fetched is not None:
                self._cache.upsert_batch([fetched])
                if fetched.unread and self._cache.mark_read(message_id):
                    fetched = fetched.model_copy(update={"unread": False})
                stored = fetched

        return self._parse(stored)

    def trash(self, message_id: str) -> OperationResult:
        return self._orchestrator.trash(self._config, message_id)

    def restore(self, message_id: str) -> OperationResult:
        return self._orchestrator.restore(self._config, message_id)

    def permanently_delete(self, message_id: str) -> bool:
        return self._orchestrator.permanently_delete(self._config, message_id)

    def delete(self, message_id: str) -> bool:
        return self._orchestrator.delete(self._config, message_id)

    def send_email(self, request: SendEmailRequest) -> None:
        """Hand a message to the SMTP mailer.

        Raises:
            ConfigurationError: If no mailer is configured.
            MailDeliveryError: If delivery fails.
        """

        if self._mailer is None:
            raise ConfigurationError("SMTP is not configured (set EMAIL_MIRROR_SMTP_HOST).")
        logger.info("send_email_requested", subject=request.subject)
        self._mailer.send(request)

    def _parse(self, stored: StoredMessage) -> EmailDetail | None:
        try:
            return self._codec.parse_detail(stored)
        except (ValueError, MessageError) as exc:
            logger.error("detail_parse_failed", message_id=stored.id, error=str(exc))
            return None
