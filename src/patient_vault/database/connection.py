"""Local store handle — owns the only writable connection to the store.

Concurrency model:
- One writable connection; every mutation goes through :meth:`LocalStore.write`
  and is stamped with a ``lastmodified`` value in the same transaction.
- Reads use per-thread read-only connections, so many readers proceed
  concurrently in WAL mode.
- Closing, replacing, exporting and re-keying take the lock exclusively,
  which guarantees no connection is live while files are moved.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, TypeVar

from patient_vault.config import Config
from patient_vault.errors import (
    ClockUnavailable,
    InvalidCandidate,
    MetadataMissing,
    ReadFailed,
    StoreError,
    StoreUnavailable,
    WriteFailed,
)
from patient_vault.utils.clock import clock_from_config

from .encryption import (
    apply_key,
    engine_errors,
    export_database,
    load_cipher_driver,
    load_driver,
)
from .models import StoreMetadata
from .replacement import side_files, transplant, validate_candidate
from .schema import get_metadata_row, migrate, set_last_modified

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUSY_TIMEOUT_SECONDS = 30


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer; writers have priority."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writers_waiting = 0
        self._writer_active = False

    @contextmanager
    def read_lock(self):
        with self._cond:
            while self._writer_active or self._writers_waiting > 0:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            self._writers_waiting += 1
            while self._readers > 0 or self._writer_active:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()


class LocalStore:
    """The embedded patient store and its encryption configuration."""

    def __init__(self, db_path: str | Path | None = None,
                 encrypted: Optional[bool] = None,
                 encryption_key: Optional[str] = None,
                 clock=None):
        self.db_path = Path(db_path) if db_path else Config.database_path()
        self.encrypted = Config.DB_ENCRYPTED if encrypted is None else encrypted
        self._encryption_key = (
            Config.DB_ENCRYPTION_KEY if encryption_key is None
            else encryption_key
        )
        self.clock = clock or clock_from_config()
        self.last_error: Optional[StoreError] = None

        self._lock = ReadWriteLock()
        self._driver = None
        self._conn = None
        self._readers: list = []
        self._readers_guard = threading.Lock()
        self._local = threading.local()
        self._generation = 0
        self._fault_listeners: list[Callable[[StoreError], None]] = []

    # ── Lifecycle ───────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def add_fault_listener(self, callback: Callable[[StoreError], None]):
        """Register a callback for faults raised while opening the store."""
        self._fault_listeners.append(callback)

    def remove_fault_listener(self, callback: Callable[[StoreError], None]):
        if callback in self._fault_listeners:
            self._fault_listeners.remove(callback)

    def open(self) -> bool:
        """Open (or create) the store and run the migration.

        Returns False when setup fails; the fault goes to the registered
        listeners and ``last_error``, and every later operation raises
        StoreUnavailable until an open succeeds.
        """
        with self._lock.write_lock():
            return self._open_locked()

    def close(self):
        """Release every connection held by this handle."""
        with self._lock.write_lock():
            self._close_locked()

    def _open_locked(self) -> bool:
        self._close_locked()
        try:
            driver = load_driver(self.encrypted)
        except StoreUnavailable as e:
            self._report_fault(e)
            return False

        conn = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect(driver, self.db_path, self.encrypted)
            migrate(conn, self._seed_time())
            conn.commit()
        except OSError as e:
            self._discard(conn)
            self._report_fault(StoreUnavailable(
                f"Cannot create data directory {self.db_path.parent}: {e}"
            ))
            return False
        except engine_errors(driver) as e:
            self._discard(conn)
            fault = StoreUnavailable(f"Cannot open database: {e}")
            fault.__cause__ = e
            self._report_fault(fault)
            return False

        self._driver = driver
        self._conn = conn
        self._generation += 1
        self.last_error = None
        logger.info("Opened %s store at %s",
                    "encrypted" if self.encrypted else "plain", self.db_path)
        return True

    def _seed_time(self) -> int:
        """Timestamp for a newly created metadata row."""
        try:
            return self.clock.now()
        except ClockUnavailable as e:
            logger.warning("Seeding metadata from the local clock: %s", e)
            return int(time.time())

    def _close_locked(self):
        with self._readers_guard:
            readers, self._readers = self._readers, []
            self._generation += 1
        for reader in readers:
            self._discard(reader)
        if self._conn is not None:
            self._discard(self._conn)
            self._conn = None
            logger.debug("Closed store connection")

    def _connect(self, driver, path: Path, encrypted: bool,
                 readonly: bool = False):
        conn = driver.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS,
                              check_same_thread=False)
        try:
            conn.row_factory = driver.Row
            if encrypted:
                apply_key(conn, self._encryption_key)
            if readonly:
                conn.execute("PRAGMA query_only = ON")
                # Touches the schema so a wrong key fails here
                conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            else:
                conn.execute("PRAGMA journal_mode = WAL").fetchone()
            conn.execute("PRAGMA foreign_keys = ON")
        except Exception:
            conn.close()
            raise
        return conn

    @staticmethod
    def _discard(conn):
        if conn is None:
            return
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning("Error closing connection: %s", e)

    def _report_fault(self, fault: StoreError):
        self.last_error = fault
        logger.error("Store unavailable: %s", fault)
        for callback in list(self._fault_listeners):
            try:
                callback(fault)
            except Exception as e:
                logger.error("Error in store fault listener: %s", e)

    def _require_open(self):
        if self._conn is None:
            raise StoreUnavailable("Database has not been initialized")
        return self._conn

    def _reader(self):
        """This thread's read-only connection, opened on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is not None and self._local.generation == self._generation:
            return conn
        conn = self._connect(self._driver, self.db_path, self.encrypted,
                             readonly=True)
        with self._readers_guard:
            self._readers.append(conn)
            self._local.conn = conn
            self._local.generation = self._generation
        return conn

    def release_reader(self):
        """Close the calling thread's read-only connection, if any.

        Short-lived threads (sync workers) call this when done so their
        connection does not outlive them.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            return
        self._local.conn = None
        with self._readers_guard:
            if not any(r is conn for r in self._readers):
                return
            self._readers = [r for r in self._readers if r is not conn]
        self._discard(conn)

    @property
    def reader_count(self) -> int:
        with self._readers_guard:
            return len(self._readers)

    # ── Reads and writes ────────────────────────────────────────

    def write(self, mutation: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``mutation`` and stamp ``lastmodified`` in one transaction.

        The timestamp is ``max(clock.now(), current lastmodified)`` so the
        stamp never moves backwards. Engine faults roll back and raise
        WriteFailed; other exceptions from ``mutation`` roll back and
        propagate unchanged.
        """
        try:
            now = self.clock.now()
        except ClockUnavailable as e:
            raise WriteFailed(f"No timestamp available: {e}") from e

        with self._lock.write_lock():
            conn = self._require_open()
            errors = engine_errors(self._driver)
            try:
                conn.execute("BEGIN IMMEDIATE")
                current = get_metadata_row(conn)
                if current is None:
                    raise MetadataMissing("Database info not found")
                timestamp = max(now, current["lastmodified"])
                result = mutation(conn)
                set_last_modified(conn, timestamp)
                conn.commit()
            except errors as e:
                conn.rollback()
                raise WriteFailed(str(e)) from e
            except BaseException:
                conn.rollback()
                raise

        logger.debug("Committed write at lastmodified=%d", timestamp)
        return result

    def read(self, query: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``query`` on a read-only connection; never touches metadata."""
        with self._lock.read_lock():
            self._require_open()
            errors = engine_errors(self._driver)
            try:
                return query(self._reader())
            except errors as e:
                raise ReadFailed(str(e)) from e

    def metadata(self) -> StoreMetadata:
        row = self.read(get_metadata_row)
        if row is None:
            raise MetadataMissing("Database info not found")
        return StoreMetadata.from_row(row)

    def current_timestamp(self) -> int:
        """The store's ``lastmodified`` value."""
        return self.metadata().last_modified

    # ── Snapshots and replacement ───────────────────────────────

    def export_snapshot(self, destination: str | Path | None = None) -> Path:
        """Write a standalone copy of the store, WAL contents included.

        The copy uses the same encryption configuration as the store.
        Defaults to ``Config.EXPORT_DIRECTORY/db.sqlite``, replacing any
        earlier export there.
        """
        return self.export_stamped_snapshot(destination)[0]

    def export_stamped_snapshot(
            self, destination: str | Path | None = None) -> tuple[Path, int]:
        """Export like :meth:`export_snapshot`; also return its ``lastmodified``.

        The timestamp is read under the same exclusive lock as the copy, so
        it is exactly the value stored in the exported file.
        """
        if destination is None:
            destination = Path(Config.EXPORT_DIRECTORY) / Config.DATABASE_FILENAME
        destination = Path(destination)

        with self._lock.write_lock():
            conn = self._require_open()
            errors = engine_errors(self._driver)
            try:
                row = get_metadata_row(conn)
                if row is None:
                    raise MetadataMissing("Database info not found")
                timestamp = row["lastmodified"]
                destination.parent.mkdir(parents=True, exist_ok=True)
                for path in [destination, *side_files(destination)]:
                    path.unlink(missing_ok=True)
                if self.encrypted:
                    export_database(conn, destination, self._encryption_key)
                else:
                    target = sqlite3.connect(str(destination))
                    try:
                        conn.backup(target)
                        target.execute("PRAGMA journal_mode = DELETE")
                    finally:
                        target.close()
            except OSError as e:
                raise ReadFailed(f"Cannot write export: {e}") from e
            except errors as e:
                raise ReadFailed(f"Export failed: {e}") from e

        logger.info("Exported store snapshot (lastmodified=%d) to %s",
                    timestamp, destination)
        return destination, timestamp

    def replace_with(self, candidate: str | Path):
        """Swap the whole store for ``candidate`` and reopen.

        The candidate must exist, be non-empty, and open under this
        store's encryption settings; otherwise InvalidCandidate is raised
        and the current store is untouched. Callers must hold the sync
        guard so no replacement races another.
        """
        candidate = Path(candidate)
        logger.info("Starting database replacement from %s", candidate)
        validate_candidate(candidate)
        self._verify_candidate(candidate, self.encrypted)

        with self._lock.write_lock():
            logger.info("Closing current database connection")
            self._close_locked()
            try:
                transplant(candidate, self.db_path)
            except StoreError:
                self._open_locked()
                raise

            logger.info("Reinitializing database connection")
            if not self._open_locked():
                raise StoreUnavailable(
                    f"Failed to reconnect to database: {self.last_error}"
                )
        logger.info("Database replacement completed")

    def _verify_candidate(self, candidate: Path, encrypted: bool):
        try:
            driver = load_driver(encrypted)
        except StoreUnavailable as e:
            raise InvalidCandidate(str(e)) from e
        conn = None
        try:
            conn = driver.connect(str(candidate))
            if encrypted:
                apply_key(conn, self._encryption_key)
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except engine_errors(driver) as e:
            raise InvalidCandidate(
                f"{candidate.name} is not a readable database: {e}"
            ) from e
        finally:
            self._discard(conn)

    # ── Encryption ──────────────────────────────────────────────

    def toggle_encryption(self) -> bool:
        """Flip encryption on the existing data; returns the new setting."""
        self.set_encryption(not self.encrypted)
        return self.encrypted

    def set_encryption(self, enabled: bool):
        """Re-encrypt (or decrypt) the stored data, then reopen.

        The data is exported into a sibling file under the new setting,
        the copy is verified, and only then swapped in with the same steps
        as a replacement. On failure the store reopens unchanged.
        """
        if enabled == self.encrypted:
            return
        cipher = load_cipher_driver()
        rekeyed = self.db_path.with_name(self.db_path.name + ".rekey")

        with self._lock.write_lock():
            self._require_open()
            self._close_locked()
            source = None
            try:
                rekeyed.unlink(missing_ok=True)
                source = cipher.connect(str(self.db_path))
                if self.encrypted:
                    apply_key(source, self._encryption_key)
                export_database(
                    source, rekeyed,
                    self._encryption_key if enabled else "",
                )
                self._discard(source)
                source = None
                self._verify_candidate(rekeyed, enabled)
                transplant(rekeyed, self.db_path)
            except (StoreError, OSError, *engine_errors(cipher)) as e:
                self._discard(source)
                rekeyed.unlink(missing_ok=True)
                self._open_locked()
                if isinstance(e, StoreError):
                    raise
                raise WriteFailed(f"Re-encryption failed: {e}") from e
            rekeyed.unlink(missing_ok=True)

            self.encrypted = enabled
            logger.info("Store is now %s", "encrypted" if enabled else "plain")
            if not self._open_locked():
                raise StoreUnavailable(
                    f"Failed to reopen database: {self.last_error}"
                )
