"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine

from fakes import FakeMailServer, make_raw


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep developer .env files and EMAIL_MIRROR_* variables out of tests."""
    from email_mirror.config import get_settings

    monkeypatch.chdir(tmp_path)
    for key in [k for k in os.environ if k.startswith("EMAIL_MIRROR_")]:
        monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_settings(tmp_path):
    """Provide mock settings for testing."""
    from email_mirror.config import Settings

    return Settings(
        _env_file=None,
        imap_host="imap.test",
        imap_username="me@example.com",
        imap_password="secret",
        imap_connect_retries=0,
        database_url=f"sqlite:///{tmp_path / 'settings.sqlite3'}",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def imap_config():
    from email_mirror.config import ImapConnectionConfig

    return ImapConnectionConfig(
        host="imap.test",
        port=993,
        username="me@example.com",
        password="secret",
        connect_retries=0,
    )


@pytest.fixture
def server() -> FakeMailServer:
    """Gmail-style server with an inbox, a trash folder and a sent folder."""
    return FakeMailServer(folders=("INBOX", "[Gmail]/Trash", "[Gmail]/Sent Mail"))


@pytest.fixture
def connector(server):
    from email_mirror.imap import ImapConnector

    return ImapConnector(client_factory=server.connect)


@pytest.fixture
def cache(tmp_path):
    from email_mirror.cache import OfflineCache

    engine = create_engine(f"sqlite:///{tmp_path / 'cache.sqlite3'}")
    repo = OfflineCache(engine, preview_limit=50)
    repo.initialize()
    return repo


@pytest.fixture
def sync_engine(cache, connector):
    from email_mirror.sync import SyncEngine

    return SyncEngine(cache, connector, batch_size=100, sent_limit=50)


@pytest.fixture
def orchestrator(cache, sync_engine, connector):
    from email_mirror.lifecycle import LifecycleOrchestrator

    return LifecycleOrchestrator(cache, sync_engine, connector)


@pytest.fixture
def service(imap_config, cache, sync_engine, orchestrator):
    from email_mirror.service import MailboxService

    return MailboxService(imap_config, cache, sync_engine, orchestrator)


@pytest.fixture
def sample_raw() -> bytes:
    """Provide a sample RFC 822 message."""
    return make_raw(
        sender="Python Weekly <newsletter@python.org>",
        subject="Weekly Newsletter - Python Tips",
        body="Welcome to this week's Python tips!",
        message_id="<weekly-42@python.org>",
        date=datetime(2024, 1, 3, 9, 30, tzinfo=timezone.utc),
    )
