"""SQLCipher helpers: driver selection, keying, and re-keyed exports.

Plain stores use the standard library ``sqlite3`` module. Encrypted stores
need the ``sqlcipher3`` driver (``pip install sqlcipher3-binary``), which
exposes the same DB-API surface.
"""

import importlib
import logging
import sqlite3

from patient_vault.errors import EncryptionUnavailable

logger = logging.getLogger(__name__)

CIPHER_MODULE = "sqlcipher3"


def sqlcipher_available() -> bool:
    """Whether the SQLCipher driver can be imported."""
    try:
        importlib.import_module(CIPHER_MODULE)
    except ImportError:
        return False
    return True


def load_cipher_driver():
    """Import and return the SQLCipher DB-API module."""
    try:
        return importlib.import_module(CIPHER_MODULE)
    except ImportError as e:
        raise EncryptionUnavailable(
            "Database encryption requires SQLCipher. "
            "Install with: pip install sqlcipher3-binary"
        ) from e


def load_driver(encrypted: bool):
    """Return the DB-API module able to open a store with this setting."""
    if encrypted:
        return load_cipher_driver()
    return sqlite3


def engine_errors(driver) -> tuple:
    """Exception classes raised by ``driver`` (and the stdlib engine)."""
    if driver is sqlite3:
        return (sqlite3.Error,)
    return (sqlite3.Error, driver.Error)


def _quote(passphrase: str) -> str:
    return "'" + passphrase.replace("'", "''") + "'"


def apply_key(conn, passphrase: str):
    """Key a fresh SQLCipher connection. Must be the first statement run.

    PRAGMA key does not accept bound parameters, so the passphrase is
    quoted as an SQL string literal.
    """
    conn.execute(f"PRAGMA key = {_quote(passphrase)}")


def export_database(conn, destination, passphrase: str = ""):
    """Write a standalone copy of ``conn``'s main database to ``destination``.

    ``conn`` must be a SQLCipher connection (keyed when its file is
    encrypted). An empty passphrase produces a plaintext copy, so this
    serves encrypted snapshots and both directions of re-encryption.
    """
    if conn.in_transaction:
        conn.commit()
    conn.execute(
        "ATTACH DATABASE ? AS export_target KEY ?",
        (str(destination), passphrase),
    )
    try:
        conn.execute("SELECT sqlcipher_export('export_target')")
    finally:
        conn.execute("DETACH DATABASE export_target")
    logger.debug("sqlcipher_export wrote %s", destination)
