"""Cached message records and the shapes handed to callers.

A :class:`StoredMessage` is keyed by the decimal UID the message had in the
folder it was last seen in. That UID is not globally stable: copying the
message to another folder yields a new one, and the cache row is rebound to it.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EmailPreview(BaseModel):
    """Listing representation of a message, without body content."""

    id: str = Field(description="Current UID rendered as a decimal string")
    sender: str = Field(description="Display address (recipient for sent mail)")
    subject: str | None = Field(default=None, description="Decoded subject")
    received_at: datetime | None = Field(default=None, description="Receipt (or sent) time")
    unread: bool = Field(default=False, description="Inverse of the \\Seen flag")


class StoredMessage(BaseModel):
    """The canonical cached record."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Current UID rendered as a decimal string")
    sender: str = Field(description="'Name <address>' or bare address")
    subject: str | None = Field(default=None, description="Decoded subject")
    received_at: datetime | None = Field(default=None, description="Receipt time, else sent time")
    unread: bool = Field(default=False, description="Inverse of the \\Seen flag")
    trashed: bool = Field(default=False, description="Local lifecycle flag")
    raw: bytes | None = Field(
        default=None,
        description="Full RFC 822 bytes; absent for bulk-synced previews",
    )

    @property
    def has_raw(self) -> bool:
        return bool(self.raw)

    def to_preview(self) -> EmailPreview:
        return EmailPreview(
            id=self.id,
            sender=self.sender,
            subject=self.subject,
            received_at=self.received_at,
            unread=self.unread,
        )


class EmailDetail(BaseModel):
    """Full view of a single message."""

    id: str
    sender: str
    subject: str | None = None
    body: str = ""
    received_at: datetime | None = None
    unread: bool = False
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)


class OperationResult(BaseModel):
    """Outcome of a trash or restore.

    ``message_id`` is the id callers should use from now on; it differs from
    the requested id when the server assigned a new UID. ``reconciled`` is
    False when the local change could not be confirmed on the server, in
    which case ``message_id`` may no longer address the message remotely.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str
    reconciled: bool = True


class SendEmailRequest(BaseModel):
    """Outbound message handed to the SMTP collaborator."""

    to: str
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str
    body: str
    attachments: list[str] = Field(default_factory=list)

    @field_validator("to", "subject", "body")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("to")
    @classmethod
    def _single_address(cls, v: str) -> str:
        _check_address(v)
        return v.strip()

    @field_validator("cc", "bcc")
    @classmethod
    def _address_list(cls, v: list[str]) -> list[str]:
        for addr in v:
            _check_address(addr)
        return [addr.strip() for addr in v]


def _check_address(value: str) -> None:
    local, sep, domain = value.strip().rpartition("@")
    if not sep or not local or not domain or " " in value.strip():
        raise ValueError(f"invalid email address: {value!r}")
