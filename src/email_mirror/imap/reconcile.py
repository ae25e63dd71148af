"""Recovering a message's new UID after it was copied to another folder.

A copy gives the message a new UID in the destination folder. Servers with
UIDPLUS report it in a ``COPYUID`` response code; for the rest, the new copy
is found by scanning UIDs appended since the copy for a matching Message-ID.
Each strategy returns the new UID or ``None`` and never raises.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from email_mirror.imap.client import REMOTE_ERRORS, MailboxConnection
from email_mirror.imap.codec import MessageCodec

logger = structlog.get_logger()


@dataclass(frozen=True)
class CopyOutcome:
    """What is known about a copy once the server acknowledged it."""

    source_uid: int
    destination: str
    copyuid: dict[int, int] = field(default_factory=dict)
    uid_next_before: int | None = None
    message_id: str | None = None


class ReconcileStrategy(Protocol):
    def resolve(self, connection: MailboxConnection, outcome: CopyOutcome) -> int | None: ...


class CopyUidStrategy:
    """Reads the destination UID straight from the COPYUID response code."""

    def resolve(self, connection: MailboxConnection, outcome: CopyOutcome) -> int | None:
        new_uid = outcome.copyuid.get(outcome.source_uid)
        if new_uid is None:
            logger.debug("copyuid_unavailable", uid=outcome.source_uid, folder=outcome.destination)
        return new_uid


class MessageIdCorrelationStrategy:
    """Finds the copy by Message-ID among UIDs near the pre-copy UIDNEXT."""

    def __init__(self, codec: MessageCodec, lookback: int = 5) -> None:
        self._codec = codec
        self._lookback = lookback

    def resolve(self, connection: MailboxConnection, outcome: CopyOutcome) -> int | None:
        if not outcome.message_id:
            logger.debug("message_id_missing", uid=outcome.source_uid)
            return None
        if outcome.uid_next_before is None:
            logger.debug("uidnext_unavailable", folder=outcome.destination)
            return None

        start = max(1, outcome.uid_next_before - self._lookback)
        wanted = outcome.message_id.lower()
        try:
            folder = connection.open_folder(outcome.destination, readonly=True)
            candidates = folder.fetch_previews(folder.uids_from(start))
        except REMOTE_ERRORS as exc:
            logger.debug("message_id_scan_failed", folder=outcome.destination, error=str(exc))
            return None

        # newest first: an older copy of the same message must not win
        for fetched in sorted(candidates, key=lambda m: m.uid, reverse=True):
            candidate_id = self._codec.message_id_of(fetched)
            if candidate_id and candidate_id.lower() == wanted:
                return fetched.uid

        logger.debug("message_id_no_match", folder=outcome.destination, start_uid=start)
        return None


def reconcile(
    strategies: Sequence[ReconcileStrategy],
    connection: MailboxConnection,
    outcome: CopyOutcome,
) -> int | None:
    """Return the first UID any strategy resolves, in order."""

    for strategy in strategies:
        new_uid = strategy.resolve(connection, outcome)
        if new_uid is not None:
            logger.debug(
                "uid_reconciled",
                strategy=type(strategy).__name__,
                old_uid=outcome.source_uid,
                new_uid=new_uid,
            )
            return new_uid
    return None
