"""Diary Sync - Main entry point."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from . import __version__
from .auth import KeychainManager, StoredCredentials
from .config import STORAGE_LOCAL, Config, setup_logging
from .diary import ALL_DATES, Activity, ActivityStore, DiaryError, new_id
from .export import build_export_rows, export_filename, format_date_label, get_export_sink
from .session import SessionContext
from .sync import LocalSnapshotStore, RemoteSnapshotStore, SyncBridge
from .sync.protocols import SnapshotStoreProtocol

logger = logging.getLogger(__name__)

MUTATING_COMMANDS = ("add", "edit", "delete")


class DiaryApp:
    """Owns the session lifecycle: login wires a store and a sync bridge,
    logout tears both down.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        snapshot_store: Optional[SnapshotStoreProtocol] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        keychain: Optional[KeychainManager] = None,
        config_file: Optional[Path] = None,
        id_factory: Callable[[], str] = new_id,
    ):
        self.config = config or Config.load(config_file)
        self._config_file = config_file
        self._id_factory = id_factory
        self.keychain = keychain or KeychainManager()

        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler()
        self._snapshot_store = snapshot_store

        self.session: Optional[SessionContext] = None
        self.store: Optional[ActivityStore] = None
        self.bridge: Optional[SyncBridge] = None

    @property
    def snapshot_store(self) -> SnapshotStoreProtocol:
        if self._snapshot_store is None:
            self._snapshot_store = self._build_snapshot_store()
        return self._snapshot_store

    def _build_snapshot_store(self) -> SnapshotStoreProtocol:
        if self.config.storage_backend == STORAGE_LOCAL:
            logger.info("Using local snapshot store")
            return LocalSnapshotStore()

        credentials = self.keychain.load()
        api_url = self.config.remote.api_url
        if credentials and credentials.api_url:
            api_url = credentials.api_url
        logger.info(f"Using remote snapshot store at {api_url}")
        return RemoteSnapshotStore(
            api_url=api_url,
            scheduler=self.scheduler,
            token=credentials.api_token if credentials else None,
            collection=self.config.remote.collection,
            poll_interval=self.config.sync.poll_interval_seconds,
            timeout=self.config.remote.timeout,
        )

    def start(self) -> None:
        if self._owns_scheduler and not self.scheduler.running:
            self.scheduler.start()

    # -- Session ----------------------------------------------------------

    @property
    def logged_in(self) -> bool:
        return self.session is not None

    def login(self, username: str) -> SessionContext:
        """Start a session for ``username``.

        Switching users discards the previous session first.

        Raises:
            ValidationFailed: If the username is blank
        """
        session = SessionContext(username)
        if self.session == session:
            return self.session
        if self.session is not None:
            self.logout()

        self.start()
        self.session = session
        self.store = ActivityStore(session, id_factory=self._id_factory)
        self.bridge = SyncBridge(
            session,
            self.store,
            self.snapshot_store,
            self.scheduler,
            debounce_ms=self.config.sync.debounce_ms,
        )
        self.bridge.start()

        self.config.last_user = session.user_id
        self._save_config()
        logger.info(f"Logged in as {session.user_id}")
        return session

    def logout(self) -> None:
        """End the session. The persisted snapshot stays untouched."""
        if self.session is None:
            return
        user = self.session.user_id
        if self.bridge is not None:
            self.bridge.stop()
        self.session = None
        self.store = None
        self.bridge = None
        logger.info(f"Logged out {user}")

    def _require_store(self) -> ActivityStore:
        if self.store is None:
            raise DiaryError("Not logged in")
        return self.store

    def _require_loaded(self) -> ActivityStore:
        store = self._require_store()
        if not self.bridge.loaded:
            raise DiaryError("Diary not loaded yet; no changes were made")
        return store

    def _save_config(self) -> None:
        try:
            self.config.save(self._config_file)
        except OSError as e:
            logger.warning(f"Failed to save config: {e}")

    # -- Activities -------------------------------------------------------

    def add_activity(self, date: str, start_time: str, end_time: str, description: str) -> Activity:
        return self._require_loaded().add(date, start_time, end_time, description)

    def update_activity(
        self, activity_id: str, date: str, start_time: str, end_time: str, description: str
    ) -> Activity:
        return self._require_loaded().update(activity_id, date, start_time, end_time, description)

    def delete_activity(
        self, activity_id: str, confirm: Optional[Callable[[Activity], bool]] = None
    ) -> bool:
        """Delete after the caller's confirmation.

        Returns:
            False if the confirmation declined, True once deleted

        Raises:
            NotFound: If no activity has this id
        """
        store = self._require_loaded()
        activity = store.get(activity_id)
        if confirm is not None and not confirm(activity):
            return False
        store.delete(activity_id)
        return True

    def view(self, selected: Optional[str] = ALL_DATES) -> dict[str, list[Activity]]:
        """Activities grouped by date, optionally for a single date."""
        return self._require_store().grouped(selected)

    def export(
        self,
        selected: Optional[str] = ALL_DATES,
        fmt: Optional[str] = None,
        directory: Optional[Path] = None,
        include_duration: bool = False,
    ) -> Path:
        """Export (filtered) activities to a spreadsheet file."""
        store = self._require_store()
        sink = get_export_sink(fmt or self.config.export.format, include_duration)
        locale = self.config.export.locale
        rows = build_export_rows(
            store.filtered(selected), date_label=lambda d: format_date_label(d, locale)
        )
        directory = Path(directory or self.config.export.directory or ".")
        return sink.export_rows(rows, directory / export_filename(selected, sink.extension))

    # -- Shutdown ---------------------------------------------------------

    def shutdown(self) -> None:
        """Flush pending edits, end the session and release resources."""
        logger.info("Shutting down...")
        if self.bridge is not None:
            self.bridge.flush()
        self.logout()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self._snapshot_store is not None and hasattr(self._snapshot_store, "close"):
            self._snapshot_store.close()
        logger.info("Shutdown complete")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="diary-sync", description="Personal activity diary")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--user", help="Username (defaults to the last one used)")
    parser.add_argument("--local", action="store_true", help="Use the local store")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for the first snapshot")
    sub = parser.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="Show activities grouped by date")
    ls.add_argument("--date", default=ALL_DATES)

    sub.add_parser("dates", help="Show dates that have activities")

    add = sub.add_parser("add", help="Add an activity")
    add.add_argument("date")
    add.add_argument("start")
    add.add_argument("end")
    add.add_argument("description")

    edit = sub.add_parser("edit", help="Update an activity")
    edit.add_argument("id")
    edit.add_argument("date")
    edit.add_argument("start")
    edit.add_argument("end")
    edit.add_argument("description")

    delete = sub.add_parser("delete", help="Delete an activity")
    delete.add_argument("id")
    delete.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    export = sub.add_parser("export", help="Export to a spreadsheet")
    export.add_argument("--date", default=ALL_DATES)
    export.add_argument("--format", choices=("xlsx", "csv"))
    export.add_argument("--output-dir", type=Path)
    export.add_argument("--duration", action="store_true", help="Include a duration column")

    token = sub.add_parser("token", help="Store the document store token in the keychain")
    token.add_argument("token")
    token.add_argument("--api-url", help="Document store URL to use with this token")
    return parser


def _confirm_delete(activity: Activity) -> bool:
    answer = input(
        f"Delete {activity.date} {activity.start_time}-{activity.end_time} "
        f"'{activity.description}'? [y/N] "
    )
    return answer.strip().lower() in ("y", "yes")


def _run_command(app: DiaryApp, args: argparse.Namespace) -> int:
    if args.command == "list":
        for day, activities in app.view(args.date).items():
            print(format_date_label(day, app.config.export.locale))
            for a in activities:
                print(f"  {a.start_time}-{a.end_time}  {a.description}  [{a.id}]")
    elif args.command == "dates":
        for day in app.store.unique_dates():
            print(day)
    elif args.command == "add":
        activity = app.add_activity(args.date, args.start, args.end, args.description)
        print(activity.id)
    elif args.command == "edit":
        app.update_activity(args.id, args.date, args.start, args.end, args.description)
    elif args.command == "delete":
        confirm = None if args.yes else _confirm_delete
        if not app.delete_activity(args.id, confirm=confirm):
            print("Cancelled.")
    elif args.command == "export":
        path = app.export(args.date, args.format, args.output_dir, args.duration)
        print(path)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    config = Config.load()
    setup_logging(args.debug or config.debug_mode)
    if args.local:
        config.storage_backend = STORAGE_LOCAL

    if args.command == "token":
        credentials = StoredCredentials(api_token=args.token, api_url=args.api_url)
        stored = KeychainManager().store(credentials)
        return 0 if stored else 1

    username = args.user or config.last_user
    if not username:
        print("No user given; pass --user.", file=sys.stderr)
        return 2

    app = DiaryApp(config=config)
    try:
        app.login(username)
        if not app.bridge.wait_for_snapshot(args.timeout):
            if args.command in MUTATING_COMMANDS:
                # Writing now would overwrite the stored diary with a partial one
                print("Error: could not load the diary; not modifying it.", file=sys.stderr)
                return 1
            logger.warning("No snapshot received yet; showing local state")
        return _run_command(app, args)
    except DiaryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
