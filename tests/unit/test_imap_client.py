"""Unit tests for IMAP connections and folder handles."""

from __future__ import annotations

import pytest

from email_mirror import utils
from email_mirror.config import ImapConnectionConfig
from email_mirror.exceptions import AuthenticationError, RemoteUnavailable
from email_mirror.imap import ImapConnector, ProtocolError

from fakes import FakeMailServer, make_raw


class TestConnect:
    def test_connection_is_logged_out_after_use(self, server, connector, imap_config) -> None:
        with connector.connect(imap_config) as connection:
            connection.open_folder("INBOX")
            assert server.open_connections == 1

        assert server.open_connections == 0
        assert server.connections[0].commands[-2:] == ["UNSELECT", "LOGOUT"]

    def test_connection_is_closed_when_body_raises(self, server, connector, imap_config) -> None:
        with pytest.raises(RuntimeError):
            with connector.connect(imap_config):
                raise RuntimeError("boom")

        assert server.open_connections == 0

    def test_rejected_login_raises_authentication_error(self, server, connector, imap_config) -> None:
        server.password = "other"

        with pytest.raises(AuthenticationError):
            with connector.connect(imap_config):
                pass

        assert server.open_connections == 0

    def test_unreachable_server_raises_remote_unavailable(self, server, connector, imap_config) -> None:
        server.fail("CONNECT", ConnectionRefusedError("refused"))

        with pytest.raises(RemoteUnavailable):
            with connector.connect(imap_config):
                pass

    def test_connect_is_retried(self, server, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(utils.time, "sleep", lambda _: None)
        attempts = {"n": 0}

        def flaky_factory(config):
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise TimeoutError("timed out")
            return server.connect(config)

        config = ImapConnectionConfig(host="imap.test", username="me@example.com", password="secret", connect_retries=2)

        with ImapConnector(client_factory=flaky_factory).connect(config) as connection:
            assert connection.folder_exists("INBOX")

        assert attempts["n"] == 3


class TestMailboxConnection:
    def test_folder_exists(self, connector, imap_config) -> None:
        with connector.connect(imap_config) as connection:
            assert connection.folder_exists("[Gmail]/Trash")
            assert not connection.folder_exists("Deleted Items")

    def test_select_missing_folder_raises(self, connector, imap_config) -> None:
        with connector.connect(imap_config) as connection:
            with pytest.raises(ProtocolError):
                connection.open_folder("Nope")

    def test_select_is_skipped_when_already_selected(self, server, connector, imap_config) -> None:
        server.add_message("INBOX", make_raw())

        with connector.connect(imap_config) as connection:
            folder = connection.open_folder("INBOX")
            folder.search_unseen()
            folder.search_unseen()
            commands = list(server.connections[0].commands)

        assert commands.count("SELECT") == 1

    def test_release_falls_back_to_close(self, imap_config) -> None:
        server = FakeMailServer(unselect=False)
        uid = server.add_message("INBOX", make_raw())
        server.folders["INBOX"].by_uid(uid).flags.add("\\Deleted")

        with ImapConnector(client_factory=server.connect).connect(imap_config) as connection:
            connection.open_folder("INBOX", readonly=True)

        assert "CLOSE" in server.connections[0].commands
        # read-only CLOSE must not expunge
        assert server.uids("INBOX") == [uid]

    def test_release_without_unselect_examines_before_close(self, imap_config) -> None:
        server = FakeMailServer(unselect=False)
        uid = server.add_message("INBOX", make_raw())
        server.folders["INBOX"].by_uid(uid).flags.add("\\Deleted")

        with ImapConnector(client_factory=server.connect).connect(imap_config) as connection:
            connection.open_folder("INBOX", readonly=False)

        assert server.connections[0].commands[-3:] == ["SELECT", "CLOSE", "LOGOUT"]
        assert server.uids("INBOX") == [uid]

    def test_status_uidnext(self, server, connector, imap_config) -> None:
        server.add_folder("Archive", uid_next=206)

        with connector.connect(imap_config) as connection:
            assert connection.status("Archive", "UIDNEXT") == 206


class TestRemoteFolder:
    def test_fetch_window_returns_previews_in_sequence(self, server, connector, imap_config) -> None:
        for n in range(3):
            server.add_message("INBOX", make_raw(subject=f"n{n}"))

        with connector.connect(imap_config) as connection:
            folder = connection.open_folder("INBOX")
            fetched = folder.fetch_window(2, 3)

        assert [m.uid for m in fetched] == [2, 3]
        assert all(m.raw is None and m.headers for m in fetched)

    def test_fetch_message_does_not_set_seen(self, server, connector, imap_config, sample_raw) -> None:
        uid = server.add_message("INBOX", sample_raw)

        with connector.connect(imap_config) as connection:
            fetched = connection.open_folder("INBOX", readonly=False).fetch_message(uid)

        assert fetched.raw == sample_raw
        assert "\\Seen" not in server.message("INBOX", uid).flags

    def test_fetch_message_missing_uid(self, server, connector, imap_config) -> None:
        with connector.connect(imap_config) as connection:
            assert connection.open_folder("INBOX").fetch_message(99) is None

    def test_uids_from_and_contains(self, server, connector, imap_config) -> None:
        for _ in range(4):
            server.add_message("INBOX", make_raw())

        with connector.connect(imap_config) as connection:
            folder = connection.open_folder("INBOX")
            assert folder.uids_from(3) == [3, 4]
            assert folder.contains(2)
            assert not folder.contains(9)

    def test_handles_reselect_their_folder(self, server, connector, imap_config) -> None:
        server.add_message("INBOX", make_raw(subject="inbox"))
        server.add_message("[Gmail]/Trash", make_raw(subject="trash"))

        with connector.connect(imap_config) as connection:
            inbox = connection.open_folder("INBOX")
            trash = connection.open_folder("[Gmail]/Trash")
            assert [m.uid for m in inbox.fetch_previews([1])] == [1]
            assert [m.uid for m in trash.fetch_previews([1])] == [1]
            assert b"Subject: inbox" in inbox.fetch_previews([1])[0].headers

    def test_copy_reports_copyuid(self, server, connector, imap_config) -> None:
        uid = server.add_message("INBOX", make_raw(), uid=100)
        server.folders["[Gmail]/Trash"].uid_next = 205

        with connector.connect(imap_config) as connection:
            mapping = connection.open_folder("INBOX", readonly=False).copy_to(uid, "[Gmail]/Trash")

        assert mapping == {100: 205}
        assert server.uids("[Gmail]/Trash") == [205]

    def test_copy_without_uidplus(self, imap_config) -> None:
        server = FakeMailServer(folders=("INBOX", "Trash"), uidplus=False)
        uid = server.add_message("INBOX", make_raw())

        with ImapConnector(client_factory=server.connect).connect(imap_config) as connection:
            mapping = connection.open_folder("INBOX", readonly=False).copy_to(uid, "Trash")

        assert mapping == {}
        assert server.uids("Trash") == [1]

    def test_copy_to_missing_folder_raises(self, server, connector, imap_config) -> None:
        uid = server.add_message("INBOX", make_raw())

        with connector.connect(imap_config) as connection:
            with pytest.raises(ProtocolError):
                connection.open_folder("INBOX", readonly=False).copy_to(uid, "Missing")

    def test_delete_and_expunge(self, server, connector, imap_config) -> None:
        keep = server.add_message("INBOX", make_raw())
        drop = server.add_message("INBOX", make_raw())

        with connector.connect(imap_config) as connection:
            folder = connection.open_folder("INBOX", readonly=False)
            folder.mark_deleted(drop)
            folder.expunge()

        assert server.uids("INBOX") == [keep]

    def test_store_on_read_only_folder_raises(self, server, connector, imap_config) -> None:
        uid = server.add_message("INBOX", make_raw())

        with connector.connect(imap_config) as connection:
            with pytest.raises(ProtocolError):
                connection.open_folder("INBOX", readonly=True).mark_seen(uid)
