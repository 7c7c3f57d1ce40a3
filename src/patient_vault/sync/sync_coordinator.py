"""SyncCoordinator — whole-database last-write-wins sync.

Each device keeps one local store and the remote folder holds one snapshot
blob tagged with a ``lastModified`` property. A sync cycle compares the two
timestamps:
1. remote newer  → download the blob and replace the local store
2. otherwise     → nothing to do (pushing is a separate, explicit action)

Cycles run on a QTimer (and on demand) in a worker thread. A single guard
lock makes sure at most one cycle or push touches the store at a time.
"""

import logging
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QObject, QThread, QTimer, Signal

from patient_vault.config import Config
from patient_vault.database.connection import LocalStore
from patient_vault.errors import (
    DownloadFailed,
    InvalidMetadata,
    RemoteUnavailable,
    SyncInProgress,
    VaultError,
)
from patient_vault.utils.formatters import format_sync_time, format_time_ago

from .remote import RemoteBlob, RemoteBlobStore, RemoteError, RemoteNotFound

logger = logging.getLogger(__name__)

LAST_MODIFIED_PROPERTY = "lastModified"


def parse_last_modified(properties: dict) -> int:
    """Read the ``lastModified`` property of a remote blob."""
    value = (properties or {}).get(LAST_MODIFIED_PROPERTY)
    if value is None or str(value).strip() == "":
        raise InvalidMetadata("Remote database has no lastModified property")
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise InvalidMetadata(
            f"Unparsable lastModified property: {value!r}"
        ) from e


@dataclass
class SyncState:
    enabled: bool = False
    status: str = "Not synced"
    last_sync: str = ""
    in_progress: bool = False


class SyncWorker(QThread):
    """Runs one sync cycle off the scheduling thread."""

    def __init__(self, coordinator: "SyncCoordinator"):
        super().__init__()
        self.coordinator = coordinator

    def run(self):
        self.coordinator.run_cycle()


class SyncCoordinator(QObject):
    """Schedules pull cycles and performs pushes against a remote store."""

    database_updated = Signal()
    status_changed = Signal(str)
    cycle_finished = Signal(dict)

    def __init__(self, store: LocalStore, remote: RemoteBlobStore,
                 parent=None):
        super().__init__(parent)
        self.store = store
        self.remote = remote
        self.state = SyncState(
            enabled=False,
            last_sync=Config.LAST_SYNC_TIMESTAMP,
        )
        self._guard = threading.Lock()
        self._remote_id: Optional[str] = Config.REMOTE_FILE_ID or None
        self._worker: Optional[SyncWorker] = None

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._on_timer)

    # ── Scheduling ──────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self.state.enabled

    @property
    def remote_file_id(self) -> Optional[str]:
        return self._remote_id

    def interval_ms(self) -> int:
        seconds = max(int(Config.SYNC_INTERVAL_SECONDS),
                      Config.MIN_SYNC_INTERVAL_SECONDS)
        return seconds * 1000

    def start(self):
        """Enable auto-sync and run the first cycle right away."""
        self.state.enabled = True
        self._set_status("Ready to sync")
        self._timer.start(self.interval_ms())
        logger.info("Auto-sync started (every %ds)", self.interval_ms() // 1000)
        self.sync_now()

    def stop(self):
        """Stop scheduling cycles; a cycle already running finishes."""
        self.state.enabled = False
        self._timer.stop()
        logger.info("Auto-sync stopped")

    def sync_now(self) -> bool:
        """Run one cycle in a worker thread. Returns False if one is running."""
        if self._worker is not None or self._guard.locked():
            logger.info("Sync already in progress; request ignored")
            return False
        worker = SyncWorker(self)
        worker.finished.connect(self._on_worker_finished)
        self._worker = worker
        worker.start()
        return True

    def wait(self, timeout_ms: int = 30000) -> bool:
        """Block until the current worker (if any) has finished."""
        worker = self._worker
        if worker is None:
            return True
        return worker.wait(timeout_ms)

    def _on_timer(self):
        if self.state.enabled:
            self.sync_now()

    def _on_worker_finished(self):
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.deleteLater()

    # ── Pull cycle ──────────────────────────────────────────────

    def run_cycle(self) -> dict:
        """Run one pull cycle on the calling thread.

        Never raises: faults become the status string and the returned
        summary dict. Returns ``{"status": "in_progress"}`` without doing
        anything when another cycle or push holds the guard.
        """
        if not self._guard.acquire(blocking=False):
            logger.info("Sync cycle skipped: another sync is in progress")
            return {"status": "in_progress"}

        self.state.in_progress = True
        try:
            self._set_status("Syncing...")
            result = self._cycle()
        except VaultError as e:
            logger.warning("Sync cycle failed: %s", e)
            self._set_status(f"Error: {e}")
            result = {"status": "error", "reason": str(e)}
        except Exception as e:
            logger.exception("Unexpected error during sync cycle")
            self._set_status(f"Error: {e}")
            result = {"status": "error", "reason": str(e)}
        finally:
            self.store.release_reader()
            self.state.in_progress = False
            self._guard.release()

        self.cycle_finished.emit(result)
        return result

    def _cycle(self) -> dict:
        local_ts = self.store.current_timestamp()
        blob_id, properties = self._remote_properties()

        if blob_id is None:
            if self.state.last_sync:
                raise RemoteUnavailable("No database found in remote folder")
            logger.info("No remote database yet; uploading initial copy")
            return self._push_locked()

        remote_ts = parse_last_modified(properties)
        logger.info("Sync compare: local=%d remote=%d", local_ts, remote_ts)

        if remote_ts <= local_ts:
            self._mark_synced()
            self._set_status("Database is up to date")
            return {"status": "up_to_date", "local": local_ts,
                    "remote": remote_ts}

        logger.info("Remote database is newer; pulling")
        self._pull(blob_id)
        now = self._mark_synced()
        self._set_status(f"Last synced: {format_sync_time(now)}")
        self.database_updated.emit()
        return {"status": "pulled", "local": local_ts, "remote": remote_ts}

    def _pull(self, blob_id: str):
        try:
            content = self.remote.download(blob_id)
        except RemoteError as e:
            raise DownloadFailed(f"Failed to download database: {e}") from e

        with tempfile.TemporaryDirectory(
            prefix="pull-", dir=self.store.db_path.parent
        ) as tmp:
            candidate = Path(tmp) / Config.DATABASE_FILENAME
            candidate.write_bytes(content)
            logger.info("Downloaded %d bytes to %s", len(content), candidate)
            self.store.replace_with(candidate)

    # ── Push ────────────────────────────────────────────────────

    def push(self) -> dict:
        """Upload a snapshot of the local store, tagged with its timestamp.

        Raises SyncInProgress when a cycle or another push is running, and
        propagates store and remote faults after recording them in the
        status string.
        """
        if not self._guard.acquire(blocking=False):
            raise SyncInProgress("A sync is already in progress")

        self.state.in_progress = True
        try:
            self._set_status("Syncing...")
            return self._push_locked()
        except VaultError as e:
            logger.warning("Push failed: %s", e)
            self._set_status(f"Error: {e}")
            raise
        finally:
            self.state.in_progress = False
            self._guard.release()

    def _push_locked(self) -> dict:
        with tempfile.TemporaryDirectory(
            prefix="push-", dir=self.store.db_path.parent
        ) as tmp:
            snapshot, timestamp = self.store.export_stamped_snapshot(
                Path(tmp) / Config.DATABASE_FILENAME
            )
            content = snapshot.read_bytes()

        properties = {LAST_MODIFIED_PROPERTY: str(timestamp)}
        try:
            blob_id = self._remote_id or self._discover_id()
            blob = None
            if blob_id:
                try:
                    blob = self.remote.update(blob_id, properties, content)
                except RemoteNotFound:
                    logger.warning("Remote blob %s disappeared; recreating",
                                   blob_id)
            if blob is None:
                blob = self.remote.create(
                    Config.REMOTE_BLOB_NAME, Config.REMOTE_MIME_TYPE,
                    properties, content,
                )
        except RemoteError as e:
            raise RemoteUnavailable(f"Upload failed: {e}") from e

        self._track_remote(blob.id)
        now = self._mark_synced()
        self._set_status(f"Last synced: {format_sync_time(now)}")
        logger.info("Pushed %d bytes (lastModified=%d) to %s",
                    len(content), timestamp, blob.id)
        return {"status": "pushed", "local": timestamp, "remote_id": blob.id}

    # ── Remote discovery ────────────────────────────────────────

    def _remote_properties(self) -> tuple[Optional[str], Optional[dict]]:
        """The tracked blob's id and properties, discovering it if needed."""
        try:
            if self._remote_id:
                try:
                    return self._remote_id, self.remote.get_metadata(
                        self._remote_id
                    )
                except RemoteNotFound:
                    logger.warning("Tracked remote blob %s disappeared",
                                   self._remote_id)
                    self._track_remote(None)

            blob_id = self._discover_id()
            if blob_id is None:
                return None, None
            self._track_remote(blob_id)
            return blob_id, self.remote.get_metadata(blob_id)
        except RemoteError as e:
            raise RemoteUnavailable(f"Remote store unavailable: {e}") from e

    def _discover_id(self) -> Optional[str]:
        blobs = self.remote.list_files(Config.REMOTE_BLOB_NAME)
        if not blobs:
            return None
        if len(blobs) > 1:
            logger.warning(
                "Found %d remote databases; using the most recent", len(blobs)
            )
        return max(blobs, key=_blob_sort_key).id

    def _track_remote(self, blob_id: Optional[str]):
        if blob_id == self._remote_id:
            return
        self._remote_id = blob_id
        Config.update_remote_file_id(blob_id or "")

    # ── State ───────────────────────────────────────────────────

    def _mark_synced(self) -> datetime:
        now = datetime.now(timezone.utc)
        self.state.last_sync = now.isoformat()
        Config.update_last_sync(self.state.last_sync)
        return now

    def _set_status(self, status: str):
        self.state.status = status
        logger.debug("Sync status: %s", status)
        self.status_changed.emit(status)

    def get_sync_status(self) -> dict:
        """Current sync state for display."""
        return {
            "enabled": self.state.enabled,
            "in_progress": self.state.in_progress,
            "status": self.state.status,
            "last_sync": self.state.last_sync,
            "last_sync_human": format_time_ago(self.state.last_sync),
            "remote_file_id": self._remote_id or "",
            "interval_seconds": self.interval_ms() // 1000,
        }


def _blob_sort_key(blob: RemoteBlob) -> int:
    try:
        return parse_last_modified(blob.properties)
    except InvalidMetadata:
        return -1
