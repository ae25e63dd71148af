"""Unit tests for configuration module."""

import pytest

from email_mirror.config import FolderRoles, ImapConnectionConfig, Settings, get_settings
from email_mirror.exceptions import ConfigurationError


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self) -> None:
        """Test that default settings are properly initialized."""
        settings = Settings(_env_file=None)

        assert settings.imap_host is None
        assert settings.imap_port == 993
        assert settings.imap_ssl is True
        assert settings.fetch_batch_size == 100
        assert settings.sent_fetch_limit == 50
        assert settings.trash_reconcile_lookback == 5
        assert settings.restore_reconcile_lookback == 10
        assert settings.database_url == "sqlite:///email_mirror.sqlite3"
        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("EMAIL_MIRROR_IMAP_HOST", "imap.example.com")
        monkeypatch.setenv("EMAIL_MIRROR_IMAP_USERNAME", "me@example.com")
        monkeypatch.setenv("EMAIL_MIRROR_IMAP_PASSWORD", "hunter2")
        monkeypatch.setenv("EMAIL_MIRROR_FETCH_BATCH_SIZE", "25")
        monkeypatch.setenv("EMAIL_MIRROR_LOG_LEVEL", "DEBUG")

        get_settings.cache_clear()
        settings = get_settings()

        assert settings.imap_host == "imap.example.com"
        assert settings.imap_password.get_secret_value() == "hunter2"
        assert settings.fetch_batch_size == 25
        assert settings.log_level == "DEBUG"

        get_settings.cache_clear()

    def test_folder_roles_from_env_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMAIL_MIRROR_FOLDER_ROLES", '{"trash": ["Papierkorb"], "sent": ["Gesendet"]}')

        settings = Settings(_env_file=None)

        assert settings.folder_roles.trash == ("Papierkorb",)
        assert settings.folder_roles.sent == ("Gesendet",)
        assert settings.folder_roles.inbox == ("INBOX",)

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(Exception):  # Pydantic ValidationError
            Settings(_env_file=None, fetch_batch_size=0)

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        get_settings.cache_clear()


class TestImapConnection:
    def test_imap_connection_is_frozen(self, mock_settings: Settings) -> None:
        config = mock_settings.imap_connection()

        assert isinstance(config, ImapConnectionConfig)
        assert config.host == "imap.test"
        assert config.username == "me@example.com"
        assert config.password.get_secret_value() == "secret"
        assert config.connect_retries == 0
        with pytest.raises(Exception):  # frozen model
            config.host = "other"  # type: ignore[misc]

    def test_imap_connection_requires_host_and_username(self) -> None:
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None, imap_username="me@example.com").imap_connection()
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None, imap_host="imap.test").imap_connection()


def test_folder_roles_search_order() -> None:
    roles = FolderRoles()

    assert roles.search_order == (
        "[Gmail]/Trash",
        "Trash",
        "Deleted Items",
        "Deleted",
        "INBOX",
        "[Gmail]/Sent Mail",
        "Sent",
        "[Gmail]/All Mail",
        "All Mail",
    )
