"""File-system side of swapping the whole store for another file.

The store handle closes its connections before calling :func:`transplant`
and reopens afterwards; nothing here touches an open database.
"""

import logging
import os
import shutil
from pathlib import Path

from patient_vault.errors import InvalidCandidate, ReplaceFailed

logger = logging.getLogger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm")


def side_files(store_path: Path) -> list[Path]:
    """Write-ahead log and shared-memory index belonging to a store file."""
    return [store_path.with_name(store_path.name + s)
            for s in SIDE_FILE_SUFFIXES]


def validate_candidate(candidate: Path):
    """Reject a replacement file that is missing or empty."""
    if not candidate.is_file():
        raise InvalidCandidate(f"Replacement file does not exist: {candidate}")
    size = candidate.stat().st_size
    logger.info("Replacement file size: %d bytes", size)
    if size == 0:
        raise InvalidCandidate(f"Replacement file is empty: {candidate}")


def remove_side_files(store_path: Path) -> list[Path]:
    """Delete the store's side files, skipping any that cannot be removed.

    A missing side file is the normal case after a clean close.
    """
    removed = []
    for path in side_files(store_path):
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Could not remove %s: %s", path.name, e)
            continue
        logger.info("Removed %s", path.name)
        removed.append(path)
    return removed


def transplant(candidate: Path, store_path: Path):
    """Put a copy of ``candidate`` at ``store_path``.

    The current store is moved aside first and restored if the copy fails,
    so an interrupted replacement leaves either the old or the new file in
    place. The candidate is copied, not moved, so it may live on another
    volume.
    """
    remove_side_files(store_path)

    previous = store_path.with_name(store_path.name + ".previous")
    incoming = store_path.with_name(store_path.name + ".incoming")

    if store_path.exists():
        os.replace(store_path, previous)
        logger.info("Moved old database file aside")

    try:
        shutil.copyfile(candidate, incoming)
        os.replace(incoming, store_path)
        logger.info("Copied new database file to %s", store_path)
        if not store_path.is_file():
            raise ReplaceFailed(
                f"Database file missing after copy: {store_path}"
            )
    except (OSError, ReplaceFailed) as e:
        logger.error("Replacing database file failed: %s", e)
        incoming.unlink(missing_ok=True)
        if previous.exists():
            os.replace(previous, store_path)
            logger.info("Restored previous database file")
        if isinstance(e, ReplaceFailed):
            raise
        raise ReplaceFailed(f"Could not copy replacement file: {e}") from e

    previous.unlink(missing_ok=True)
