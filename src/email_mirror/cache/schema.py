"""Schema bootstrap for the offline message cache.

Creates ``email_messages`` and its indexes when missing and adds columns that
older databases lack. Safe to run on every start-up.
"""

from __future__ import annotations

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine

logger = structlog.get_logger()

TABLE_NAME = "email_messages"

# column -> ALTER statement for databases created before the column existed
_MIGRATED_COLUMNS = {
    "trashed": f"ALTER TABLE {TABLE_NAME} ADD COLUMN trashed BOOLEAN NOT NULL DEFAULT FALSE",
}


def _is_sqlite(engine: Engine) -> bool:
    return engine.dialect.name == "sqlite"


def _create_table_sql(engine: Engine) -> str:
    raw_type = "BLOB" if _is_sqlite(engine) else "BYTEA"
    return f"""
        CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
            id VARCHAR(255) PRIMARY KEY,
            sender TEXT NOT NULL,
            subject TEXT,
            received_at TIMESTAMP WITH TIME ZONE,
            unread BOOLEAN NOT NULL,
            trashed BOOLEAN NOT NULL DEFAULT FALSE,
            raw {raw_type}
        )
    """


def _index_sql(engine: Engine) -> list[str]:
    order = "received_at DESC" if _is_sqlite(engine) else "received_at DESC NULLS LAST"
    return [
        f"CREATE INDEX IF NOT EXISTS idx_received_at ON {TABLE_NAME}({order})",
        f"CREATE INDEX IF NOT EXISTS idx_trashed ON {TABLE_NAME}(trashed)",
    ]


def _existing_columns(conn: Connection) -> set[str]:
    return {col["name"].lower() for col in inspect(conn).get_columns(TABLE_NAME)}


def ensure_schema(engine: Engine) -> None:
    """Create or upgrade the cache table."""

    with engine.begin() as conn:
        conn.execute(text(_create_table_sql(engine)))

        columns = _existing_columns(conn)
        for column, alter in _MIGRATED_COLUMNS.items():
            if column in columns:
                continue
            conn.execute(text(alter))
            logger.info("email_cache_column_added", table=TABLE_NAME, column=column)

        for statement in _index_sql(engine):
            conn.execute(text(statement))

    logger.info("email_cache_schema_ready", dialect=engine.dialect.name)
