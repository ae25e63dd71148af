"""Outbound delivery over SMTP."""

from __future__ import annotations

import smtplib
from collections.abc import Callable
from email.message import EmailMessage
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, SecretStr

from email_mirror.exceptions import ConfigurationError, MailDeliveryError
from email_mirror.models import SendEmailRequest

logger = structlog.get_logger()


class SmtpConfig(BaseModel):
    """Immutable SMTP submission parameters."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 587
    ssl: bool = False
    starttls: bool = True
    username: str
    password: SecretStr = SecretStr("")
    timeout: float = 15.0


class SmtpMailer:
    """Sends plain-text messages through one submission endpoint."""

    def __init__(self, config: SmtpConfig, smtp_factory: Callable[..., Any] | None = None) -> None:
        self._config = config
        self._smtp_factory = smtp_factory

    @classmethod
    def from_settings(cls, settings: Any) -> SmtpMailer:
        """Build a mailer, falling back to the IMAP credentials.

        Raises:
            ConfigurationError: If no SMTP host or username is configured.
        """

        username = settings.smtp_username or settings.imap_username
        if not settings.smtp_host or not username:
            raise ConfigurationError(
                "SMTP host is required to send mail (set EMAIL_MIRROR_SMTP_HOST)."
            )
        return cls(
            SmtpConfig(
                host=settings.smtp_host,
                port=settings.smtp_port,
                ssl=settings.smtp_ssl,
                starttls=settings.smtp_starttls,
                username=username,
                password=settings.smtp_password or settings.imap_password,
                timeout=settings.imap_timeout,
            )
        )

    def build_message(self, request: SendEmailRequest) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._config.username
        message["To"] = request.to
        if request.cc:
            message["Cc"] = ", ".join(request.cc)
        message["Subject"] = request.subject
        message.set_content(request.body, charset="utf-8")
        return message

    def send(self, request: SendEmailRequest) -> None:
        """Deliver ``request``. Bcc recipients only appear in the envelope.

        Raises:
            MailDeliveryError: If the server refuses the message or any
                recipient, or cannot be reached.
        """

        if request.attachments:
            logger.warning("smtp_attachments_ignored", count=len(request.attachments))

        message = self.build_message(request)
        recipients = [request.to, *request.cc, *request.bcc]
        logger.info("smtp_delivery_started", subject=request.subject, recipients=len(recipients))

        try:
            with self._connect() as server:
                if self._config.starttls and not self._config.ssl:
                    server.starttls()
                server.login(self._config.username, self._config.password.get_secret_value())
                refused = server.send_message(message, self._config.username, recipients)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("smtp_delivery_failed", subject=request.subject, error=str(exc))
            raise MailDeliveryError(f"Unable to send email: {exc}") from exc

        if refused:
            logger.error("smtp_recipients_refused", refused=sorted(refused))
            raise MailDeliveryError(f"Server refused recipients: {sorted(refused)}")

        logger.info("smtp_delivery_complete", subject=request.subject)

    def _connect(self) -> Any:
        if self._smtp_factory is not None:
            return self._smtp_factory(self._config)
        if self._config.ssl:
            return smtplib.SMTP_SSL(self._config.host, self._config.port, timeout=self._config.timeout)
        return smtplib.SMTP(self._config.host, self._config.port, timeout=self._config.timeout)
