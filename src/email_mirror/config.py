"""Configuration management for Email Mirror.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.

Connection parameters are frozen into an :class:`ImapConnectionConfig` once at
start-up and passed explicitly into every sync / lifecycle call, so no
operation ever reads mutable session state.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from email_mirror.exceptions import ConfigurationError

INBOX = "INBOX"


class FolderRoles(BaseModel):
    """Ordered candidate folder names per logical role.

    Providers name their special folders differently ("Trash" vs
    "[Gmail]/Trash"); each role lists the names to try, most specific first.
    """

    model_config = ConfigDict(frozen=True)

    trash: tuple[str, ...] = ("[Gmail]/Trash", "Trash", "Deleted Items", "Deleted")
    sent: tuple[str, ...] = ("[Gmail]/Sent Mail", "Sent")
    inbox: tuple[str, ...] = (INBOX,)
    all_mail: tuple[str, ...] = ("[Gmail]/All Mail", "All Mail")

    @property
    def search_order(self) -> tuple[str, ...]:
        """Folders searched when a message's current location is unknown."""
        return self.trash + self.inbox + self.sent + self.all_mail


class ImapConnectionConfig(BaseModel):
    """Immutable IMAP connection parameters."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 993
    ssl: bool = True
    username: str
    password: SecretStr = SecretStr("")
    timeout: float = 15.0
    connect_retries: int = 2


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the EMAIL_MIRROR_ prefix (e.g., EMAIL_MIRROR_IMAP_HOST).
    """

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_MIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # IMAP Configuration
    imap_host: str | None = Field(
        default=None,
        description="IMAP server host name",
    )
    imap_port: int = Field(
        default=993,
        description="IMAP server port",
    )
    imap_ssl: bool = Field(
        default=True,
        description="Connect with implicit TLS (imaps)",
    )
    imap_username: str | None = Field(
        default=None,
        description="IMAP login, also the account's own address",
    )
    imap_password: SecretStr = Field(
        default=SecretStr(""),
        description="IMAP password or app password",
    )
    imap_timeout: float = Field(
        default=15.0,
        description="Socket timeout for IMAP connect/read/write in seconds",
    )
    imap_connect_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transport errors while connecting",
    )

    # Sync Configuration
    fetch_batch_size: int = Field(
        default=100,
        gt=0,
        description="Number of most recent messages fetched per folder sync",
    )
    sent_fetch_limit: int = Field(
        default=50,
        gt=0,
        description="Number of most recent messages listed from the sent folder",
    )
    trash_reconcile_lookback: int = Field(
        default=5,
        ge=0,
        description="UIDs below the trash UIDNEXT watermark scanned after a copy",
    )
    restore_reconcile_lookback: int = Field(
        default=10,
        ge=0,
        description="UIDs below the inbox UIDNEXT watermark scanned after a copy",
    )
    folder_roles: FolderRoles = Field(
        default_factory=FolderRoles,
        description="Candidate folder names per role (JSON when set from env)",
    )

    # Offline cache
    database_url: str = Field(
        default="sqlite:///email_mirror.sqlite3",
        description="SQLAlchemy URL of the offline message cache",
    )
    preview_limit: int = Field(
        default=50,
        gt=0,
        description="Maximum number of previews returned per listing",
    )

    # SMTP Configuration
    smtp_host: str | None = Field(default=None, description="SMTP submission host")
    smtp_port: int = Field(default=587, description="SMTP submission port")
    smtp_ssl: bool = Field(default=False, description="Use implicit TLS (SMTPS)")
    smtp_starttls: bool = Field(default=True, description="Upgrade with STARTTLS")
    smtp_username: str | None = Field(
        default=None,
        description="SMTP login; defaults to the IMAP username",
    )
    smtp_password: SecretStr | None = Field(
        default=None,
        description="SMTP password; defaults to the IMAP password",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    def imap_connection(self) -> ImapConnectionConfig:
        """Freeze the IMAP settings into a connection config.

        Raises:
            ConfigurationError: If host or username is missing.
        """
        if not self.imap_host or not self.imap_username:
            raise ConfigurationError(
                "IMAP host and username are required "
                "(set EMAIL_MIRROR_IMAP_HOST and EMAIL_MIRROR_IMAP_USERNAME)."
            )
        return ImapConnectionConfig(
            host=self.imap_host,
            port=self.imap_port,
            ssl=self.imap_ssl,
            username=self.imap_username,
            password=self.imap_password,
            timeout=self.imap_timeout,
            connect_retries=self.imap_connect_retries,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
