"""Application configuration — loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

from patient_vault.utils.platform import get_app_support_dir, get_documents_dir

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

_DATA_DIRECTORY = Path(
    os.getenv("PATIENT_VAULT_DATA_DIR") or str(get_app_support_dir())
)

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _DATA_DIRECTORY / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATA_DIRECTORY: Path = _DATA_DIRECTORY
    DATABASE_FILENAME: str = "db.sqlite"
    EXPORT_DIRECTORY: Path = Path(
        os.getenv("PATIENT_VAULT_EXPORT_DIR") or str(get_documents_dir())
    )

    # Encryption at rest
    DB_ENCRYPTION_KEY: str = os.getenv("DB_ENCRYPTION_KEY", "passTest")
    DB_ENCRYPTED: bool = _runtime.get(
        "db_encrypted", _env_flag("DB_ENCRYPTED", "true")
    )

    # Sync
    SYNC_ENABLED: bool = _runtime.get(
        "sync_enabled", _env_flag("SYNC_ENABLED", "false")
    )
    SYNC_INTERVAL_SECONDS: int = int(_runtime.get(
        "sync_interval_seconds",
        os.getenv("SYNC_INTERVAL_SECONDS", "30"),
    ))
    SYNC_FOLDER_PATH: str = _runtime.get(
        "sync_folder_path",
        os.getenv("SYNC_FOLDER_PATH", ""),
    )
    REMOTE_FILE_ID: str = _runtime.get("remote_file_id", "")
    LAST_SYNC_TIMESTAMP: str = _runtime.get("last_sync_timestamp", "")
    REMOTE_BLOB_NAME: str = "db.sqlite"
    REMOTE_MIME_TYPE: str = "application/x-sqlite3"

    # Clock used to stamp writes
    CLOCK_SOURCE: str = _runtime.get(
        "clock_source",
        os.getenv("CLOCK_SOURCE", "local"),
    )
    TIME_SERVER_URL: str = os.getenv("TIME_SERVER_URL", "https://www.google.com")
    TIME_SERVER_TIMEOUT: float = float(os.getenv("TIME_SERVER_TIMEOUT", "5"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    MIN_SYNC_INTERVAL_SECONDS = 5

    @classmethod
    def database_path(cls) -> Path:
        """Canonical path of the primary store file."""
        return Path(cls.DATA_DIRECTORY) / cls.DATABASE_FILENAME

    @classmethod
    def update_encryption(cls, enabled: bool):
        """Record whether the store on disk is encrypted and persist."""
        cls.DB_ENCRYPTED = enabled
        settings = _load_settings()
        settings["db_encrypted"] = enabled
        _save_settings(settings)

    @classmethod
    def update_sync_settings(cls, enabled: bool, interval_seconds: int,
                             folder: str):
        """Update sync settings at runtime and persist to disk."""
        interval_seconds = max(int(interval_seconds),
                               cls.MIN_SYNC_INTERVAL_SECONDS)
        cls.SYNC_ENABLED = enabled
        cls.SYNC_INTERVAL_SECONDS = interval_seconds
        cls.SYNC_FOLDER_PATH = folder

        settings = _load_settings()
        settings["sync_enabled"] = enabled
        settings["sync_interval_seconds"] = interval_seconds
        settings["sync_folder_path"] = folder
        _save_settings(settings)

    @classmethod
    def update_remote_file_id(cls, file_id: str):
        """Remember the remote blob that holds this store."""
        cls.REMOTE_FILE_ID = file_id
        settings = _load_settings()
        settings["remote_file_id"] = file_id
        _save_settings(settings)

    @classmethod
    def update_last_sync(cls, timestamp: str):
        """Persist the ISO timestamp of the last successful sync."""
        cls.LAST_SYNC_TIMESTAMP = timestamp
        settings = _load_settings()
        settings["last_sync_timestamp"] = timestamp
        _save_settings(settings)

    @classmethod
    def update_clock_source(cls, source: str):
        """Select the time source used to stamp writes ('local' or 'server')."""
        if source not in ("local", "server"):
            raise ValueError(f"Unknown clock source: {source!r}")
        cls.CLOCK_SOURCE = source
        settings = _load_settings()
        settings["clock_source"] = source
        _save_settings(settings)
