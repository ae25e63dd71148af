"""Conversion between fetched IMAP messages and cached records."""

from __future__ import annotations

from datetime import datetime, timezone
from email import message_from_bytes
from email.header import decode_header, make_header
from email.message import Message
from email.parser import BytesHeaderParser
from email.utils import getaddresses, parsedate_to_datetime

import structlog

from email_mirror.imap.responses import FetchedMessage
from email_mirror.models import EmailDetail, StoredMessage

logger = structlog.get_logger()

UNKNOWN_ADDRESS = "unknown"
PLACEHOLDER_BODY = "Email content not available (unable to fetch from server)"


def decode_mime_header(value: str | None) -> str | None:
    """Decode RFC 2047 encoded-words into a Unicode string."""
    if value is None:
        return None
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


def _header(message: Message, name: str) -> str | None:
    # compat32 hands back Header objects for values with undecodable bytes
    value = message.get(name)
    return None if value is None else str(value)


def _format_address(name: str, addr: str) -> str:
    name = (decode_mime_header(name) or "").strip()
    if name and addr:
        return f"{name} <{addr}>"
    return addr or name


def _address_list(value: str | None) -> list[str]:
    if not value:
        return []
    out = []
    for name, addr in getaddresses([value]):
        formatted = _format_address(name, addr)
        if formatted:
            out.append(formatted)
    return out


def _first_address(value: str | None) -> str:
    addresses = _address_list(value)
    return addresses[0] if addresses else UNKNOWN_ADDRESS


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _part_text(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if payload is None:
        raw = part.get_payload()
        return raw if isinstance(raw, str) else ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def extract_text_body(part: Message) -> str:
    """Pull displayable text out of a (possibly multipart) message.

    Inside a multipart, the first non-empty ``text/plain`` child wins outright;
    text gathered from earlier siblings is only returned when no plain part
    follows. Non-text leaves contribute nothing.
    """

    content_type = part.get_content_type()
    if content_type in ("text/plain", "text/html"):
        return _part_text(part)
    if part.is_multipart():
        collected: list[str] = []
        for child in part.get_payload():
            text = extract_text_body(child)
            if not text:
                continue
            if child.get_content_type() == "text/plain":
                return text
            collected.append(text)
        return "".join(collected)
    return ""


class MessageCodec:
    """Maps fetched messages to :class:`StoredMessage` and back to details."""

    def __init__(self) -> None:
        self._header_parser = BytesHeaderParser()

    def _headers(self, fetched: FetchedMessage) -> Message:
        return self._header_parser.parsebytes(fetched.header_source or b"")

    def decode(self, fetched: FetchedMessage) -> StoredMessage:
        """Build the cached record for a message seen in a folder.

        The id is the folder UID. The timestamp is INTERNALDATE, falling back
        to the Date header; raw bytes are kept only for full fetches.
        """

        headers = self._headers(fetched)
        received_at = fetched.internal_date or _parse_date(_header(headers, "Date"))
        return StoredMessage(
            id=str(fetched.uid),
            sender=_first_address(_header(headers, "From")),
            subject=decode_mime_header(_header(headers, "Subject")),
            received_at=received_at,
            unread=not fetched.seen,
            raw=fetched.raw,
        )

    def decode_sent_preview(self, fetched: FetchedMessage) -> StoredMessage:
        """Like :meth:`decode` but addressed to the first To recipient.

        Sent mail is timed by its Date header rather than its arrival in the
        sent folder.
        """

        headers = self._headers(fetched)
        sent_at = _parse_date(_header(headers, "Date")) or fetched.internal_date
        return StoredMessage(
            id=str(fetched.uid),
            sender=_first_address(_header(headers, "To")),
            subject=decode_mime_header(_header(headers, "Subject")),
            received_at=sent_at,
            unread=not fetched.seen,
            raw=fetched.raw,
        )

    def message_id_of(self, fetched: FetchedMessage) -> str | None:
        value = _header(self._headers(fetched), "Message-ID")
        if value is None:
            return None
        value = " ".join(str(value).split())
        return value or None

    def parse_detail(self, stored: StoredMessage) -> EmailDetail:
        """Render a cached record for display.

        Without raw bytes, the detail carries a placeholder body and no
        recipients.
        """

        if not stored.has_raw:
            return EmailDetail(
                id=stored.id,
                sender=stored.sender,
                subject=stored.subject,
                body=PLACEHOLDER_BODY,
                received_at=stored.received_at,
                unread=stored.unread,
            )

        message = message_from_bytes(stored.raw or b"")
        return EmailDetail(
            id=stored.id,
            sender=stored.sender,
            subject=stored.subject,
            body=extract_text_body(message),
            received_at=stored.received_at,
            unread=stored.unread,
            to=_address_list(_header(message, "To")),
            cc=_address_list(_header(message, "Cc")),
        )
