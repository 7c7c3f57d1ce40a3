"""Command-line entry point — opens the store and runs one command."""

import argparse
import logging
import signal
import sys
from datetime import date

from PySide6.QtCore import QCoreApplication, QTimer

from patient_vault.config import Config
from patient_vault.database.connection import LocalStore
from patient_vault.database.models import Patient
from patient_vault.database.repository import PatientRepository
from patient_vault.errors import VaultError
from patient_vault.sync.remote import FolderBlobStore
from patient_vault.sync.sync_coordinator import SyncCoordinator

logger = logging.getLogger("patient_vault")


def _configure_logging():
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patient-vault",
        description="Encrypted patient records with whole-database sync.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List all patients")

    add = sub.add_parser("add", help="Add a patient")
    add.add_argument("--first", required=True)
    add.add_argument("--last", required=True)
    add.add_argument("--dob", required=True, type=date.fromisoformat,
                     help="Date of birth (YYYY-MM-DD)")
    add.add_argument("--mrn", required=True, help="Medical record number")
    add.add_argument("--notes", default=None)

    search = sub.add_parser("search", help="Search by name or record number")
    search.add_argument("query")

    delete = sub.add_parser("delete", help="Delete a patient by id")
    delete.add_argument("id", type=int)

    export = sub.add_parser("export", help="Export a standalone copy")
    export.add_argument("--dest", default=None,
                        help="Destination file (default: Documents/db.sqlite)")

    sub.add_parser("push", help="Upload the local database")
    sub.add_parser("sync", help="Run one sync cycle")
    sub.add_parser("run", help="Keep syncing on a timer until interrupted")
    sub.add_parser("status", help="Show sync status")
    sub.add_parser("encrypt", help="Encrypt the existing database")
    sub.add_parser("decrypt", help="Decrypt the existing database")
    return parser


def _print_patients(patients: list[Patient]):
    if not patients:
        print("No patients found.")
        return
    for p in patients:
        print(f"{p.id:>5}  {p.full_name:<30}  {p.date_of_birth.isoformat()}  "
              f"MRN {p.medical_record_number}")


def _coordinator(store: LocalStore) -> SyncCoordinator:
    if not Config.SYNC_FOLDER_PATH:
        raise SystemExit(
            "No sync folder configured. Set SYNC_FOLDER_PATH in .env."
        )
    return SyncCoordinator(store, FolderBlobStore(Config.SYNC_FOLDER_PATH))


def _run_loop(store: LocalStore) -> int:
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    coordinator = _coordinator(store)
    coordinator.status_changed.connect(lambda s: print(s))
    coordinator.database_updated.connect(
        lambda: logger.info("Local database replaced by a newer remote copy")
    )

    def _shutdown(*_):
        coordinator.stop()
        app.quit()

    signal.signal(signal.SIGINT, _shutdown)
    # Lets the interpreter handle SIGINT while Qt owns the main loop
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(500)

    coordinator.start()
    code = app.exec()
    coordinator.wait()
    return code


def _run_command(args, store: LocalStore) -> int:
    repo = PatientRepository(store)

    if args.command == "list":
        _print_patients(repo.load_all())
    elif args.command == "add":
        patient = repo.save(Patient(
            first_name=args.first,
            last_name=args.last,
            date_of_birth=args.dob,
            medical_record_number=args.mrn,
            notes=args.notes,
        ))
        print(f"Saved patient {patient.id}: {patient.full_name}")
        if Config.SYNC_ENABLED and Config.SYNC_FOLDER_PATH:
            _coordinator(store).push()
    elif args.command == "search":
        _print_patients(repo.search(args.query))
    elif args.command == "delete":
        patient = repo.fetch(args.id)
        if patient is None:
            print(f"No patient with id {args.id}")
            return 1
        repo.delete(patient)
        print(f"Deleted patient {args.id}")
        if Config.SYNC_ENABLED and Config.SYNC_FOLDER_PATH:
            _coordinator(store).push()
    elif args.command == "export":
        print(f"Exported to {store.export_snapshot(args.dest)}")
    elif args.command == "push":
        result = _coordinator(store).push()
        print(f"Uploaded (lastModified={result['local']})")
    elif args.command == "sync":
        coordinator = _coordinator(store)
        result = coordinator.run_cycle()
        print(coordinator.state.status)
        return 1 if result["status"] == "error" else 0
    elif args.command == "status":
        status = _coordinator(store).get_sync_status()
        print(f"Status:    {status['status']}")
        print(f"Last sync: {status['last_sync_human']}")
        print(f"Remote id: {status['remote_file_id'] or '-'}")
        print(f"Interval:  {status['interval_seconds']}s")
    elif args.command == "run":
        return _run_loop(store)
    elif args.command in ("encrypt", "decrypt"):
        enabled = args.command == "encrypt"
        store.set_encryption(enabled)
        Config.update_encryption(enabled)
        print("Database encrypted." if enabled else "Database decrypted.")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Launch the patient-vault command line."""
    _configure_logging()
    args = _build_parser().parse_args(argv)

    store = LocalStore()
    if not store.open():
        print(f"Database unavailable: {store.last_error}", file=sys.stderr)
        return 1

    try:
        return _run_command(args, store)
    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
