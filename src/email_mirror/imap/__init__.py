"""IMAP access: connections, folder discovery, message codec and UID reconciliation."""

from .client import REMOTE_ERRORS, ImapConnector, MailboxConnection, ProtocolError, RemoteFolder
from .codec import MessageCodec
from .folders import FolderLocator
from .reconcile import CopyOutcome, CopyUidStrategy, MessageIdCorrelationStrategy, reconcile
from .responses import FetchedMessage

__all__ = [
    "REMOTE_ERRORS",
    "CopyOutcome",
    "CopyUidStrategy",
    "FetchedMessage",
    "FolderLocator",
    "ImapConnector",
    "MailboxConnection",
    "MessageCodec",
    "MessageIdCorrelationStrategy",
    "ProtocolError",
    "RemoteFolder",
    "reconcile",
]
