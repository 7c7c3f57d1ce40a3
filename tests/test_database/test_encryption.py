"""Tests for SQLCipher-backed stores and encryption migration."""

import sqlite3

import pytest

from patient_vault.database.connection import LocalStore
from patient_vault.database.encryption import (
    _quote,
    load_driver,
    sqlcipher_available,
)
from patient_vault.database.repository import PatientRepository
from patient_vault.errors import EncryptionUnavailable, InvalidCandidate


class TestHelpers:
    def test_plain_driver_is_sqlite3(self):
        assert load_driver(False) is sqlite3

    def test_quote_escapes_single_quotes(self):
        assert _quote("it's") == "'it''s'"

    def test_missing_driver(self, monkeypatch):
        import patient_vault.database.encryption as enc
        monkeypatch.setattr(enc, "CIPHER_MODULE", "no_such_cipher_module")
        assert sqlcipher_available() is False
        with pytest.raises(EncryptionUnavailable):
            load_driver(True)

    def test_set_encryption_without_driver(self, store, monkeypatch):
        import patient_vault.database.encryption as enc
        monkeypatch.setattr(enc, "CIPHER_MODULE", "no_such_cipher_module")
        with pytest.raises(EncryptionUnavailable):
            store.set_encryption(True)
        assert store.is_open
        assert store.encrypted is False

    def test_set_encryption_same_value_is_noop(self, store):
        store.set_encryption(False)
        assert store.encrypted is False


class TestEncryptedStore:
    @pytest.fixture(autouse=True)
    def _require_sqlcipher(self):
        pytest.importorskip("sqlcipher3")

    @pytest.fixture
    def encrypted_store(self, tmp_path, clock):
        handle = LocalStore(tmp_path / "enc" / "db.sqlite", encrypted=True,
                            encryption_key="s3cret", clock=clock)
        assert handle.open()
        yield handle
        handle.close()

    def test_file_is_not_plain_sqlite(self, encrypted_store, make_patient):
        PatientRepository(encrypted_store).save(make_patient())
        encrypted_store.close()
        conn = sqlite3.connect(str(encrypted_store.db_path))
        try:
            with pytest.raises(sqlite3.DatabaseError):
                conn.execute("SELECT COUNT(*) FROM patients").fetchone()
        finally:
            conn.close()

    def test_wrong_key_fails_to_open(self, encrypted_store, clock):
        encrypted_store.close()
        wrong = LocalStore(encrypted_store.db_path, encrypted=True,
                           encryption_key="wrong", clock=clock)
        assert wrong.open() is False
        assert wrong.last_error is not None

    def test_encrypted_export_round_trip(self, encrypted_store, make_patient,
                                         tmp_path):
        repo = PatientRepository(encrypted_store)
        repo.save(make_patient())
        snapshot = encrypted_store.export_snapshot(tmp_path / "snap.sqlite")

        encrypted_store.replace_with(snapshot)
        assert len(repo.load_all()) == 1

    def test_plain_candidate_rejected_by_encrypted_store(
            self, encrypted_store, store, tmp_path):
        plain = store.export_snapshot(tmp_path / "plain.sqlite")
        with pytest.raises(InvalidCandidate):
            encrypted_store.replace_with(plain)

    def test_encrypt_existing_data(self, store, repo, make_patient, db_path):
        repo.save(make_patient())
        store.set_encryption(True)

        assert store.encrypted is True
        assert len(repo.load_all()) == 1
        store.close()
        conn = sqlite3.connect(str(db_path))
        try:
            with pytest.raises(sqlite3.DatabaseError):
                conn.execute("SELECT COUNT(*) FROM patients").fetchone()
        finally:
            conn.close()

    def test_toggle_back_to_plain(self, store, repo, make_patient):
        repo.save(make_patient())
        before = store.current_timestamp()

        assert store.toggle_encryption() is True
        assert store.toggle_encryption() is False

        assert len(repo.load_all()) == 1
        assert store.current_timestamp() == before
