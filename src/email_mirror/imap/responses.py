"""Helpers for parsing imaplib response data.

imaplib hands back FETCH results as a flat list mixing ``(meta, literal)``
tuples with bare byte strings; metadata items (UID, FLAGS, INTERNALDATE) may
appear before or after the literal. These helpers regroup that list per
message and pull out the few items this package requests.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

_RECORD_START = re.compile(rb"^\d+ \(")
_SEQ_RE = re.compile(r"^(\d+) \(")
_UID_RE = re.compile(r"\bUID (\d+)")
_FLAGS_RE = re.compile(r"\bFLAGS \(([^)]*)\)")
_INTERNALDATE_RE = re.compile(r'\bINTERNALDATE "([^"]+)"')

FLAG_SEEN = "\\Seen"
FLAG_DELETED = "\\Deleted"


@dataclass(frozen=True)
class FetchedMessage:
    """One message as returned by a UID FETCH."""

    uid: int
    flags: tuple[str, ...] = ()
    internal_date: datetime | None = None
    headers: bytes | None = None
    raw: bytes | None = None
    sequence: int | None = None

    @property
    def seen(self) -> bool:
        return FLAG_SEEN in self.flags

    @property
    def header_source(self) -> bytes | None:
        """Bytes that start with the message header block."""
        return self.raw if self.raw is not None else self.headers


@dataclass
class _FetchRecord:
    meta: str
    literal: bytes | None = None
    trailing: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join([self.meta, *self.trailing])


def quote_folder(name: str) -> str:
    """Quote a mailbox name for use as an IMAP astring."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _decode(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _iter_records(data: list[Any] | None) -> Iterator[_FetchRecord]:
    current: _FetchRecord | None = None
    for item in data or []:
        if item is None:
            continue
        if isinstance(item, tuple):
            if current is not None:
                yield current
            current = _FetchRecord(meta=_decode(item[0]), literal=item[1] if len(item) > 1 else None)
        elif isinstance(item, (bytes, str)):
            raw = item if isinstance(item, bytes) else item.encode()
            if current is not None and not _RECORD_START.match(raw):
                current.trailing.append(_decode(raw))
                continue
            if current is not None:
                yield current
            current = _FetchRecord(meta=_decode(raw))
    if current is not None:
        yield current


def parse_internaldate(text: str) -> datetime | None:
    match = _INTERNALDATE_RE.search(text)
    if match is None:
        return None
    try:
        return datetime.strptime(match.group(1).strip(), "%d-%b-%Y %H:%M:%S %z")
    except ValueError:
        return None


def parse_flags(text: str) -> tuple[str, ...]:
    match = _FLAGS_RE.search(text)
    if match is None:
        return ()
    return tuple(match.group(1).split())


def parse_fetch(data: list[Any] | None, *, full: bool = False) -> list[FetchedMessage]:
    """Parse UID FETCH response data.

    Args:
        data: The data list returned by ``imaplib.IMAP4.uid("FETCH", ...)``.
        full: Whether the literal is the whole message (``BODY.PEEK[]``)
            rather than a header block.

    Returns:
        One FetchedMessage per response carrying a UID, in server order.
    """

    out: list[FetchedMessage] = []
    for record in _iter_records(data):
        text = record.text
        uid_match = _UID_RE.search(text)
        if uid_match is None:
            continue
        seq_match = _SEQ_RE.match(record.meta)
        out.append(
            FetchedMessage(
                uid=int(uid_match.group(1)),
                flags=parse_flags(text),
                internal_date=parse_internaldate(text),
                headers=None if full else record.literal,
                raw=record.literal if full else None,
                sequence=int(seq_match.group(1)) if seq_match else None,
            )
        )
    return out


def parse_search(data: list[Any] | None) -> list[int]:
    """Parse SEARCH response data into ascending ids."""
    ids: list[int] = []
    for item in data or []:
        if not item:
            continue
        ids.extend(int(tok) for tok in _decode(item).split() if tok.isdigit())
    return sorted(set(ids))


def parse_status(data: list[Any] | None, item: str) -> int | None:
    """Read one numeric item from STATUS response data."""
    pattern = re.compile(rf"\b{re.escape(item)} (\d+)", re.IGNORECASE)
    for entry in data or []:
        if entry is None:
            continue
        text = _decode(entry[0] if isinstance(entry, tuple) else entry)
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def _expand_uid_set(text: str) -> list[int]:
    uids: list[int] = []
    for chunk in text.split(","):
        lo, sep, hi = chunk.partition(":")
        if not lo.isdigit() or (sep and not hi.isdigit()):
            return []
        start, end = int(lo), int(hi) if sep else int(lo)
        step = 1 if end >= start else -1
        uids.extend(range(start, end + step, step))
    return uids


def parse_copyuid(data: list[Any] | None) -> dict[int, int]:
    """Parse the UIDPLUS ``COPYUID`` response code.

    Accepts either the bare code data (``b"1234 5:6 17:18"``) or a full
    response text (``b"[COPYUID 1234 5 17] Done"``).

    Returns:
        Mapping of source UID to destination UID; empty when the code is
        absent or malformed.
    """

    for entry in data or []:
        if not entry:
            continue
        text = _decode(entry).strip()
        bracketed = re.search(r"\[COPYUID ([^\]]+)\]", text, re.IGNORECASE)
        if bracketed:
            text = bracketed.group(1)
        parts = text.split()
        if len(parts) < 3 or not parts[0].isdigit():
            continue
        source = _expand_uid_set(parts[1])
        dest = _expand_uid_set(parts[2])
        if source and len(source) == len(dest):
            return dict(zip(source, dest))
    return {}
