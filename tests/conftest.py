"""Shared test fixtures."""

import os
from datetime import date

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from patient_vault.config import Config
from patient_vault.database.connection import LocalStore
from patient_vault.database.models import Patient
from patient_vault.database.repository import PatientRepository
from patient_vault.sync.remote import FolderBlobStore


class FakeClock:
    """Deterministic clock; tests set ``value`` directly."""

    name = "fake"

    def __init__(self, value: int = 1_000):
        self.value = value

    def now(self) -> int:
        return self.value


@pytest.fixture(autouse=True)
def isolate_config(tmp_path, monkeypatch):
    """Keep settings.json and every path inside the test's tmp dir."""
    import patient_vault.config as config_mod
    monkeypatch.setattr(config_mod, "_SETTINGS_FILE",
                        tmp_path / "settings.json")
    monkeypatch.setattr(Config, "DATA_DIRECTORY", tmp_path / "data")
    monkeypatch.setattr(Config, "EXPORT_DIRECTORY", tmp_path / "documents")
    monkeypatch.setattr(Config, "DB_ENCRYPTED", False)
    monkeypatch.setattr(Config, "SYNC_ENABLED", False)
    monkeypatch.setattr(Config, "SYNC_INTERVAL_SECONDS", 30)
    monkeypatch.setattr(Config, "SYNC_FOLDER_PATH", "")
    monkeypatch.setattr(Config, "REMOTE_FILE_ID", "")
    monkeypatch.setattr(Config, "LAST_SYNC_TIMESTAMP", "")
    monkeypatch.setattr(Config, "CLOCK_SOURCE", "local")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary store path."""
    return tmp_path / "data" / "db.sqlite"


@pytest.fixture
def make_store(tmp_path):
    """Factory for extra open stores (e.g. a second device)."""
    opened = []

    def _make(name="db.sqlite", clock_value=1_000, **kwargs):
        handle = LocalStore(tmp_path / name, clock=FakeClock(clock_value),
                            **{"encrypted": False, **kwargs})
        assert handle.open()
        opened.append(handle)
        return handle

    yield _make
    for handle in opened:
        handle.close()


@pytest.fixture
def store(db_path, clock):
    """An open, unencrypted store driven by the fake clock."""
    handle = LocalStore(db_path, encrypted=False, clock=clock)
    assert handle.open()
    yield handle
    handle.close()


@pytest.fixture
def repo(store):
    return PatientRepository(store)


@pytest.fixture
def sync_folder(tmp_path):
    """Shared remote folder between devices."""
    folder = tmp_path / "remote"
    folder.mkdir()
    return folder


@pytest.fixture
def remote(sync_folder):
    return FolderBlobStore(sync_folder)


@pytest.fixture
def make_patient():
    """Build a valid patient, overriding any field."""
    def _make(**overrides) -> Patient:
        fields = dict(
            first_name="A",
            last_name="B",
            date_of_birth=date(1990, 1, 1),
            medical_record_number="123",
        )
        fields.update(overrides)
        return Patient(**fields)
    return _make
