"""Outbound mail."""

from .mailer import SmtpConfig, SmtpMailer

__all__ = ["SmtpConfig", "SmtpMailer"]
