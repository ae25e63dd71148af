"""Relational offline cache of mailbox messages.

The cache is the system of record for everything not currently being read from
the server. Every method is a single statement (bulk upsert excepted) and
never raises for storage errors: failures are logged and reported as
``False`` / ``None`` / ``[]``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Boolean, DateTime, Integer, LargeBinary, String, bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from email_mirror.cache.schema import TABLE_NAME, ensure_schema
from email_mirror.models import EmailPreview, StoredMessage

logger = structlog.get_logger()

_TIMESTAMP = DateTime(timezone=True)

_UPSERT = text(
    f"""
    INSERT INTO {TABLE_NAME} (id, sender, subject, received_at, unread, trashed, raw)
    VALUES (:id, :sender, :subject, :received_at, :unread, FALSE, :raw)
    ON CONFLICT(id) DO UPDATE SET
        sender = excluded.sender,
        subject = excluded.subject,
        received_at = excluded.received_at,
        unread = excluded.unread,
        raw = excluded.raw
    """
).bindparams(
    bindparam("received_at", type_=_TIMESTAMP),
    bindparam("unread", type_=Boolean()),
    bindparam("raw", type_=LargeBinary()),
)

_PREVIEW_COLUMNS = {
    "id": String(),
    "sender": String(),
    "subject": String(),
    "received_at": _TIMESTAMP,
    "unread": Boolean(),
}

# received_at IS NULL sorts FALSE before TRUE on both SQLite and Postgres
_LOAD_PREVIEWS = (
    text(
        f"""
        SELECT id, sender, subject, received_at, unread
        FROM {TABLE_NAME}
        WHERE trashed = :trashed
        ORDER BY received_at IS NULL, received_at DESC, id DESC
        LIMIT :limit
        """
    )
    .bindparams(bindparam("trashed", type_=Boolean()), bindparam("limit", type_=Integer()))
    .columns(**_PREVIEW_COLUMNS)
)

_LOAD_BY_ID = text(
    f"""
    SELECT id, sender, subject, received_at, unread, trashed, raw
    FROM {TABLE_NAME}
    WHERE id = :id
    """
).columns(**_PREVIEW_COLUMNS, trashed=Boolean(), raw=LargeBinary())

_IS_TRASHED = text(f"SELECT trashed FROM {TABLE_NAME} WHERE id = :id").columns(trashed=Boolean())


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OfflineCache:
    """Repository over the ``email_messages`` table."""

    def __init__(self, engine: Engine, preview_limit: int = 50) -> None:
        """Create a cache.

        Args:
            engine: SQLAlchemy engine for the cache database.
            preview_limit: Default number of previews returned per listing.
        """

        self._engine = engine
        self._preview_limit = preview_limit

    @classmethod
    def from_url(cls, database_url: str, preview_limit: int = 50) -> OfflineCache:
        return cls(create_engine(database_url), preview_limit=preview_limit)

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """Create or upgrade the cache schema."""
        ensure_schema(self._engine)

    def upsert_batch(self, messages: Iterable[StoredMessage]) -> bool:
        """Insert or update messages by id.

        Updates overwrite every field except ``trashed``; new rows start out
        not trashed.
        """

        rows = [
            {
                "id": m.id,
                "sender": m.sender,
                "subject": m.subject,
                "received_at": _to_utc(m.received_at),
                "unread": m.unread,
                "raw": m.raw,
            }
            for m in messages
        ]
        if not rows:
            return True

        try:
            with self._engine.begin() as conn:
                conn.execute(_UPSERT, rows)
        except SQLAlchemyError as exc:
            logger.error("email_cache_upsert_failed", count=len(rows), error=str(exc))
            return False

        logger.debug("email_cache_upserted", count=len(rows))
        return True

    def load_previews(self, trashed: bool, limit: int | None = None) -> list[EmailPreview]:
        """Newest-first previews with the given trashed flag.

        Rows without a timestamp come last; ties are broken by id, descending.
        """

        params = {"trashed": trashed, "limit": self._preview_limit if limit is None else limit}
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(_LOAD_PREVIEWS, params).mappings().all()
        except SQLAlchemyError as exc:
            logger.error("email_cache_read_failed", trashed=trashed, error=str(exc))
            return []

        return [
            EmailPreview(
                id=r["id"],
                sender=r["sender"],
                subject=r["subject"],
                received_at=_to_utc(r["received_at"]),
                unread=bool(r["unread"]),
            )
            for r in rows
        ]

    def mark_trashed(self, message_id: str) -> bool:
        return self._update("UPDATE {table} SET trashed = TRUE WHERE id = :id", message_id, "mark_trashed")

    def unmark_trashed(self, message_id: str) -> bool:
        return self._update("UPDATE {table} SET trashed = FALSE WHERE id = :id", message_id, "unmark_trashed")

    def mark_read(self, message_id: str) -> bool:
        return self._update("UPDATE {table} SET unread = FALSE WHERE id = :id", message_id, "mark_read")

    def permanently_delete(self, message_id: str) -> bool:
        return self._update("DELETE FROM {table} WHERE id = :id", message_id, "permanently_delete")

    def rebind_id(self, old_id: str, new_id: str) -> bool:
        """Rewrite a row's primary key in place.

        Returns:
            True when the ids are equal or a row was rewritten.
        """

        if old_id == new_id:
            return True
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(f"UPDATE {TABLE_NAME} SET id = :new_id WHERE id = :old_id"),
                    {"new_id": new_id, "old_id": old_id},
                )
        except SQLAlchemyError as exc:
            logger.error("email_cache_rebind_failed", old_id=old_id, new_id=new_id, error=str(exc))
            return False

        logger.debug("email_cache_rebound", old_id=old_id, new_id=new_id, rows=result.rowcount)
        return (result.rowcount or 0) > 0

    def is_trashed(self, message_id: str) -> bool:
        try:
            with self._engine.connect() as conn:
                value = conn.execute(_IS_TRASHED, {"id": message_id}).scalar()
        except SQLAlchemyError as exc:
            logger.error("email_cache_read_failed", message_id=message_id, error=str(exc))
            return False
        return bool(value)

    def load_by_id(self, message_id: str) -> StoredMessage | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(_LOAD_BY_ID, {"id": message_id}).mappings().first()
        except SQLAlchemyError as exc:
            logger.error("email_cache_read_failed", message_id=message_id, error=str(exc))
            return None

        if row is None:
            return None
        return _row_to_message(row)

    def _update(self, sql: str, message_id: str, action: str) -> bool:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(text(sql.format(table=TABLE_NAME)), {"id": message_id})
        except SQLAlchemyError as exc:
            logger.error("email_cache_update_failed", action=action, message_id=message_id, error=str(exc))
            return False

        rows = result.rowcount or 0
        logger.debug("email_cache_updated", action=action, message_id=message_id, rows=rows)
        return rows > 0


def _row_to_message(row: Any) -> StoredMessage:
    raw = row["raw"]
    return StoredMessage(
        id=row["id"],
        sender=row["sender"],
        subject=row["subject"],
        received_at=_to_utc(row["received_at"]),
        unread=bool(row["unread"]),
        trashed=bool(row["trashed"]),
        raw=bytes(raw) if raw is not None else None,
    )
