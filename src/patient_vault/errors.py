"""Exception hierarchy shared by the store, the repository and sync."""


class VaultError(Exception):
    """Base exception for patient-vault operations."""


# ── Local store ─────────────────────────────────────────────────


class StoreError(VaultError):
    """Base exception for local store faults."""


class StoreUnavailable(StoreError):
    """No open store handle (setup failed, closed, or mid-replacement)."""


class EncryptionUnavailable(StoreUnavailable):
    """The store is configured encrypted but SQLCipher cannot be loaded."""


class MetadataMissing(StoreError):
    """The dbinfo row is absent after migration — treated as corruption."""


class WriteFailed(StoreError):
    """The engine rejected a mutation; nothing was committed."""


class ReadFailed(StoreError):
    """The engine failed to execute a read."""


class InvalidCandidate(StoreError):
    """A replacement file is missing, empty, or cannot be opened."""


class ReplaceFailed(StoreError):
    """A step of the store replacement failed."""


# ── Records ─────────────────────────────────────────────────────


class ValidationFailed(VaultError):
    """A record failed validation before reaching the store."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


# ── Sync ────────────────────────────────────────────────────────


class SyncError(VaultError):
    """Base exception for sync operations."""


class RemoteUnavailable(SyncError):
    """The remote store could not be listed or holds no database."""


class InvalidMetadata(SyncError):
    """The remote blob's lastModified property is missing or unparsable."""


class DownloadFailed(SyncError):
    """The remote blob could not be downloaded."""


class SyncInProgress(SyncError):
    """Another sync cycle or push currently holds the guard."""


class ClockUnavailable(VaultError):
    """The configured time source could not produce a timestamp."""
