"""Database schema definition and migration.

Table and column names are part of the file format exchanged with other
devices through sync, so they are kept exactly as other clients write them.
"""

import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
METADATA_KEY = 1

# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS patients (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        firstName TEXT NOT NULL,
        lastName TEXT NOT NULL,
        dateOfBirth DATE NOT NULL,
        medicalRecordNumber TEXT NOT NULL UNIQUE,
        notes TEXT
    )""",

    """CREATE TABLE IF NOT EXISTS dbinfo (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        lastmodified INTEGER NOT NULL UNIQUE,
        dbversion TEXT DEFAULT '1.0' UNIQUE
    )""",
]


def migrate(conn, now: int):
    """Create missing tables and the metadata row.

    Idempotent: an already-migrated store (including one pulled from
    another device) is left as it is. ``now`` seeds ``lastmodified`` only
    when the metadata row is absent. The caller commits.
    """
    for stmt in _SCHEMA_STATEMENTS:
        conn.execute(stmt)

    row = conn.execute(
        "SELECT id FROM dbinfo WHERE id = ?", (METADATA_KEY,)
    ).fetchone()
    if row is None:
        logger.info("Seeding store metadata (lastmodified=%s)", now)
        conn.execute(
            "INSERT INTO dbinfo (id, lastmodified, dbversion) "
            "VALUES (?, ?, ?)",
            (METADATA_KEY, now, SCHEMA_VERSION),
        )


def get_metadata_row(conn):
    """Return the singleton dbinfo row, or None when it is missing."""
    return conn.execute(
        "SELECT id, lastmodified, dbversion FROM dbinfo WHERE id = ?",
        (METADATA_KEY,),
    ).fetchone()


def set_last_modified(conn, timestamp: int) -> int:
    """Stamp the metadata row; returns the number of rows updated."""
    cursor = conn.execute(
        "UPDATE dbinfo SET lastmodified = ? WHERE id = ?",
        (timestamp, METADATA_KEY),
    )
    return cursor.rowcount
