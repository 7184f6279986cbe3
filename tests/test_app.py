"""Tests for the application lifecycle and CLI."""

from unittest.mock import Mock, patch

import pytest

from diary_sync.auth import StoredCredentials
from diary_sync.config import STORAGE_LOCAL, Config
from diary_sync.diary.errors import DiaryError, NotFound, ValidationFailed
from diary_sync.main import DiaryApp, main
from diary_sync.sync.bridge import SyncState
from diary_sync.sync.local_store import LocalSnapshotStore
from diary_sync.sync.remote_store import RemoteSnapshotStore

GYM = {"id": "g", "date": "2024-01-10", "startTime": "09:00", "endTime": "10:00", "description": "Gym"}


class TestDiaryApp:
    """Tests for DiaryApp with an in-memory snapshot store."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, fake_scheduler, fake_snapshot_store):
        self.tmp_path = tmp_path
        self.config_file = tmp_path / "config.json"
        self.scheduler = fake_scheduler
        self.remote = fake_snapshot_store
        self.keychain = Mock()
        self.app = DiaryApp(
            config=Config(),
            snapshot_store=self.remote,
            scheduler=self.scheduler,
            keychain=self.keychain,
            config_file=self.config_file,
        )

    def login_synced(self, user="alice", activities=()):
        self.app.login(user)
        self.remote.push(user, list(activities))

    def test_blank_username_rejected(self):
        with pytest.raises(ValidationFailed, match="username"):
            self.app.login("   ")

        assert not self.app.logged_in

    def test_login_remembers_user(self):
        session = self.app.login("  alice ")

        assert session.user_id == "alice"
        assert Config.load(self.config_file).last_user == "alice"

    def test_login_same_user_is_noop(self):
        self.app.login("alice")
        bridge = self.app.bridge

        self.app.login("alice")

        assert self.app.bridge is bridge
        assert len(self.remote.subscriptions) == 1

    def test_switch_user_discards_previous_session(self):
        self.login_synced("alice", [GYM])
        self.app.add_activity("2024-01-10", "10:00", "11:00", "Work")
        old_store = self.app.store

        self.app.login("bob")

        assert len(old_store) == 0
        assert self.remote.subscriptions[0].active is False
        assert self.remote.subscriptions[1].key == "bob"
        assert self.scheduler.jobs == {}
        assert self.remote.writes == []

    def test_logout(self):
        self.login_synced("alice", [GYM])

        self.app.logout()

        assert self.app.store is None
        assert not self.app.logged_in
        with pytest.raises(DiaryError, match="Not logged in"):
            self.app.add_activity("2024-01-10", "10:00", "11:00", "Work")

    def test_add_schedules_write(self):
        self.login_synced()

        activity = self.app.add_activity("2024-01-10", "09:00", "10:00", "Gym")

        assert self.app.bridge.state is SyncState.DIRTY
        assert self.app.view()["2024-01-10"] == [activity]

    def test_mutations_refused_before_diary_loads(self):
        self.app.login("alice")

        with pytest.raises(DiaryError, match="not loaded"):
            self.app.add_activity("2024-01-10", "09:00", "10:00", "Gym")
        with pytest.raises(DiaryError, match="not loaded"):
            self.app.delete_activity("g", confirm=lambda a: True)

        assert len(self.app.store) == 0
        assert self.scheduler.jobs == {}
        assert self.remote.writes == []

    def test_update_activity(self):
        self.login_synced("alice", [GYM])

        self.app.update_activity("g", "2024-01-10", "09:00", "09:45", "Short gym")

        assert self.app.store.get("g").end_time == "09:45"

    def test_delete_declined(self):
        self.login_synced("alice", [GYM])
        confirm = Mock(return_value=False)

        assert self.app.delete_activity("g", confirm=confirm) is False
        assert len(self.app.store) == 1
        assert confirm.call_args[0][0].id == "g"

    def test_delete_confirmed(self):
        self.login_synced("alice", [GYM])

        assert self.app.delete_activity("g", confirm=lambda a: True) is True
        assert len(self.app.store) == 0

    def test_delete_unknown(self):
        self.login_synced()
        with pytest.raises(NotFound):
            self.app.delete_activity("missing", confirm=lambda a: True)

    def test_view_filtered(self):
        other = dict(GYM, id="x", date="2024-01-11")
        self.login_synced("alice", [GYM, other])

        assert list(self.app.view("2024-01-11")) == ["2024-01-11"]
        assert list(self.app.view()) == ["2024-01-10", "2024-01-11"]

    def test_export_all(self):
        self.login_synced("alice", [GYM])

        path = self.app.export(directory=self.tmp_path)

        assert path == self.tmp_path / "diary-all.xlsx"
        assert path.exists()

    def test_export_single_date_csv(self):
        self.login_synced("alice", [GYM])
        self.app.config.export.locale = "en"

        path = self.app.export("2024-01-10", fmt="csv", directory=self.tmp_path)

        assert path.name == "diary-2024-01-10.csv"
        assert "Wednesday, 10 January 2024" in path.read_text(encoding="utf-8")

    def test_shutdown_flushes_pending_write(self):
        self.login_synced()
        self.app.add_activity("2024-01-10", "09:00", "10:00", "Gym")

        self.app.shutdown()

        assert len(self.remote.writes) == 1
        assert self.app.store is None


class TestSnapshotStoreSelection:
    def test_remote_uses_keychain_credentials(self, fake_scheduler):
        keychain = Mock()
        keychain.load.return_value = StoredCredentials(api_token="tok", api_url="https://diary.example.com")
        app = DiaryApp(config=Config(), scheduler=fake_scheduler, keychain=keychain)

        store = app.snapshot_store

        assert isinstance(store, RemoteSnapshotStore)
        assert store.token == "tok"
        assert store.api_url == "https://diary.example.com"
        store.close()

    def test_remote_without_credentials(self, fake_scheduler):
        keychain = Mock()
        keychain.load.return_value = None
        app = DiaryApp(config=Config(), scheduler=fake_scheduler, keychain=keychain)

        store = app.snapshot_store

        assert store.token is None
        assert store.api_url == Config().remote.api_url
        store.close()


class TestLocalBackend:
    """End to end through the SQLite store."""

    def make_app(self, tmp_path, fake_scheduler):
        return DiaryApp(
            config=Config(storage_backend=STORAGE_LOCAL),
            snapshot_store=LocalSnapshotStore(db_path=tmp_path / "diary.db"),
            scheduler=fake_scheduler,
            keychain=Mock(),
            config_file=tmp_path / "config.json",
        )

    def test_edits_persist_across_sessions(self, tmp_path, fake_scheduler):
        app = self.make_app(tmp_path, fake_scheduler)
        app.login("alice")
        assert app.bridge.wait_for_snapshot(0)
        app.add_activity("2024-01-10", "09:00", "10:00", "Gym")
        app.shutdown()

        app = self.make_app(tmp_path, fake_scheduler)
        app.login("alice")

        assert [a.description for a in app.store.activities] == ["Gym"]
        app.shutdown()


class TestMain:
    """Tests for the command line entry point."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, fake_scheduler, fake_snapshot_store):
        self.config = Config(last_user="alice")
        self.remote = fake_snapshot_store
        self.local = LocalSnapshotStore(db_path=tmp_path / "diary.db")
        self.use_local = False

        def make_app(config):
            return DiaryApp(
                config=config,
                snapshot_store=self.local if self.use_local else self.remote,
                scheduler=fake_scheduler,
                keychain=Mock(),
                config_file=tmp_path / "config.json",
            )

        with patch("diary_sync.main.Config.load", return_value=self.config), \
                patch("diary_sync.main.setup_logging"), \
                patch("diary_sync.main.DiaryApp", side_effect=make_app):
            yield

    def test_no_user(self, capsys):
        self.config.last_user = None

        assert main(["list"]) == 2
        assert "--user" in capsys.readouterr().err

    def test_add_refused_without_snapshot(self, capsys):
        code = main(["--timeout", "0", "add", "2024-01-10", "09:00", "10:00", "Gym"])

        assert code == 1
        assert "not modifying" in capsys.readouterr().err
        assert self.remote.writes == []

    def test_list_without_snapshot_still_runs(self):
        assert main(["--timeout", "0", "list"]) == 0

    def test_add_and_list(self, capsys):
        self.use_local = True

        assert main(["--user", "bob", "add", "2024-01-10", "09:00", "10:00", "Gym"]) == 0
        assert main(["--user", "bob", "list"]) == 0

        out = capsys.readouterr().out
        assert "Rabu, 10 Januari 2024" in out
        assert "09:00-10:00  Gym" in out

    def test_conflict_reported(self, capsys):
        self.use_local = True
        main(["add", "2024-01-10", "09:00", "10:00", "Gym"])

        code = main(["add", "2024-01-10", "09:30", "10:30", "Call"])

        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_token_command(self):
        with patch("diary_sync.main.KeychainManager") as manager_cls:
            manager_cls.return_value.store.return_value = True

            assert main(["token", "secret", "--api-url", "https://diary.example.com"]) == 0

        credentials = manager_cls.return_value.store.call_args[0][0]
        assert credentials.api_token == "secret"
        assert credentials.api_url == "https://diary.example.com"
