"""Data models for Email Mirror.

This module contains Pydantic models for data validation and serialization.
"""

from .message import (
    EmailDetail,
    EmailPreview,
    OperationResult,
    SendEmailRequest,
    StoredMessage,
)

__all__ = [
    "EmailDetail",
    "EmailPreview",
    "OperationResult",
    "SendEmailRequest",
    "StoredMessage",
]
