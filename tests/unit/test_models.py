"""Unit tests for data models."""

from datetime import datetime, timezone

import pytest

from email_mirror.models import EmailDetail, OperationResult, SendEmailRequest, StoredMessage


class TestStoredMessage:
    """Test suite for StoredMessage model."""

    def test_defaults(self) -> None:
        message = StoredMessage(id="100", sender="alice@example.com")

        assert message.trashed is False
        assert message.unread is False
        assert message.raw is None
        assert message.has_raw is False

    def test_to_preview_drops_body_and_flags(self) -> None:
        received = datetime(2024, 1, 3, tzinfo=timezone.utc)
        message = StoredMessage(
            id="100",
            sender="Alice <alice@example.com>",
            subject="Hi",
            received_at=received,
            unread=True,
            trashed=True,
            raw=b"Subject: Hi\r\n\r\nbody",
        )

        preview = message.to_preview()

        assert preview.id == "100"
        assert preview.sender == "Alice <alice@example.com>"
        assert preview.received_at == received
        assert preview.unread is True
        assert not hasattr(preview, "raw")

    def test_is_immutable(self) -> None:
        message = StoredMessage(id="1", sender="a@example.com")
        with pytest.raises(Exception):  # Pydantic ValidationError
            message.id = "2"  # type: ignore[misc]

    def test_model_copy_updates_fields(self) -> None:
        message = StoredMessage(id="1", sender="a@example.com", unread=True)

        updated = message.model_copy(update={"unread": False})

        assert updated.unread is False
        assert message.unread is True


def test_operation_result_defaults_to_reconciled() -> None:
    result = OperationResult(success=True, message_id="205")

    assert result.reconciled is True


def test_email_detail_recipient_lists_default_empty() -> None:
    detail = EmailDetail(id="1", sender="a@example.com")

    assert detail.to == []
    assert detail.cc == []
    assert detail.body == ""


class TestSendEmailRequest:
    """Test suite for SendEmailRequest validation."""

    def test_valid_request(self) -> None:
        request = SendEmailRequest(
            to=" bob@example.com ",
            cc=["carol@example.com"],
            subject="Lunch",
            body="Noon?",
        )

        assert request.to == "bob@example.com"
        assert request.bcc == []
        assert request.attachments == []

    @pytest.mark.parametrize("field", ["to", "subject", "body"])
    def test_blank_fields_rejected(self, field: str) -> None:
        data = {"to": "bob@example.com", "subject": "Lunch", "body": "Noon?"}
        data[field] = "   "
        with pytest.raises(Exception):  # Pydantic ValidationError
            SendEmailRequest(**data)

    def test_invalid_cc_rejected(self) -> None:
        with pytest.raises(Exception):  # Pydantic ValidationError
            SendEmailRequest(to="bob@example.com", cc=["not-an-address"], subject="s", body="b")
