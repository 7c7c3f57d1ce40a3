"""Tests for the command-line entry point."""

import pytest

from patient_vault.app import main
from patient_vault.config import Config
from patient_vault.sync.remote import FolderBlobStore


def _add(first="Ada", last="Lovelace", mrn="MRN-1"):
    return main(["add", "--first", first, "--last", last,
                 "--dob", "1990-01-01", "--mrn", mrn])


class TestRecords:
    def test_add_and_list(self, capsys):
        assert _add() == 0
        assert "Saved patient 1: Ada Lovelace" in capsys.readouterr().out

        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "Ada Lovelace" in out
        assert "MRN-1" in out

    def test_list_empty(self, capsys):
        assert main(["list"]) == 0
        assert "No patients found." in capsys.readouterr().out

    def test_search(self, capsys):
        _add()
        _add(first="Grace", last="Hopper", mrn="MRN-2")
        capsys.readouterr()

        assert main(["search", "hop"]) == 0
        out = capsys.readouterr().out
        assert "Grace Hopper" in out
        assert "Ada" not in out

    def test_delete(self, capsys):
        _add()
        assert main(["delete", "1"]) == 0
        assert main(["delete", "1"]) == 1
        assert "No patient with id 1" in capsys.readouterr().out

    def test_invalid_record_reports_error(self, capsys):
        assert _add(first=" ") == 1
        assert "First name cannot be empty" in capsys.readouterr().err

    def test_export_to_documents(self):
        _add()
        assert main(["export"]) == 0
        assert (Config.EXPORT_DIRECTORY / "db.sqlite").exists()

    def test_unavailable_store(self, capsys, monkeypatch, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        monkeypatch.setattr(Config, "DATA_DIRECTORY", blocker)
        assert main(["list"]) == 1
        assert "Database unavailable" in capsys.readouterr().err


class TestSyncCommands:
    @pytest.fixture(autouse=True)
    def _needs_qt(self, qapp):
        pass

    def test_push_requires_folder(self):
        with pytest.raises(SystemExit):
            main(["push"])

    def test_push_and_sync(self, sync_folder, monkeypatch, capsys):
        monkeypatch.setattr(Config, "SYNC_FOLDER_PATH", str(sync_folder))
        _add()

        assert main(["push"]) == 0
        blobs = FolderBlobStore(sync_folder).list_files()
        assert len(blobs) == 1

        assert main(["sync"]) == 0
        assert "Database is up to date" in capsys.readouterr().out

    def test_add_pushes_when_sync_enabled(self, sync_folder, monkeypatch):
        monkeypatch.setattr(Config, "SYNC_ENABLED", True)
        monkeypatch.setattr(Config, "SYNC_FOLDER_PATH", str(sync_folder))
        _add()
        assert len(FolderBlobStore(sync_folder).list_files()) == 1

    def test_status(self, sync_folder, monkeypatch, capsys):
        monkeypatch.setattr(Config, "SYNC_FOLDER_PATH", str(sync_folder))
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert "Not synced" in out
        assert "Never" in out
