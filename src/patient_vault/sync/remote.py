"""Remote blob store client used by the sync coordinator.

A blob is an opaque named object (always a full database snapshot here)
carrying a small dict of string properties. The coordinator only relies
on the ``lastModified`` property.

Folder layout used by :class:`FolderBlobStore`:
    <root>/
        <blob_id>.blob    — blob content
        <blob_id>.json    — name, mime type, properties
"""

import json
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Transport or storage fault talking to the remote store."""


class RemoteNotFound(RemoteError):
    """The requested blob does not exist."""


@dataclass
class RemoteBlob:
    id: str
    name: str
    mime_type: str = ""
    properties: dict = field(default_factory=dict)
    modified_time: str = ""


class RemoteBlobStore(ABC):
    """Private, application-scoped folder of named blobs."""

    @abstractmethod
    def list_files(self, name_contains: str = "") -> list[RemoteBlob]:
        """Blobs whose name contains ``name_contains``."""

    @abstractmethod
    def get_metadata(self, blob_id: str) -> dict:
        """Properties of one blob; raises RemoteNotFound if absent."""

    @abstractmethod
    def download(self, blob_id: str) -> bytes:
        ...

    @abstractmethod
    def create(self, name: str, mime_type: str, properties: dict,
               content: bytes) -> RemoteBlob:
        ...

    @abstractmethod
    def update(self, blob_id: str, properties: dict,
               content: bytes) -> RemoteBlob:
        """Replace a blob's content and merge ``properties`` into its own."""


class FolderBlobStore(RemoteBlobStore):
    """Blob store over a plain directory (e.g. a cloud-synced folder).

    Content and sidecar are each written to a temporary file and renamed
    into place, so readers on other devices never see a half-written blob.
    The sidecar is written last: a blob becomes visible only once its
    content is complete.
    """

    CONTENT_SUFFIX = ".blob"
    META_SUFFIX = ".json"

    def __init__(self, root: str | Path):
        self.root = Path(root)

    # ── Reads ───────────────────────────────────────────────────

    def list_files(self, name_contains: str = "") -> list[RemoteBlob]:
        if not self.root.is_dir():
            raise RemoteError(f"Sync folder not accessible: {self.root}")
        blobs = []
        for meta_path in sorted(self.root.glob(f"*{self.META_SUFFIX}")):
            try:
                blob = self._read_meta(meta_path.stem)
            except RemoteError as e:
                logger.warning("Skipping unreadable blob %s: %s",
                               meta_path.name, e)
                continue
            if name_contains in blob.name:
                blobs.append(blob)
        return blobs

    def get_metadata(self, blob_id: str) -> dict:
        return dict(self._read_meta(blob_id).properties)

    def download(self, blob_id: str) -> bytes:
        path = self._content_path(blob_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise RemoteNotFound(f"Blob {blob_id} not found") from e
        except OSError as e:
            raise RemoteError(f"Cannot read blob {blob_id}: {e}") from e

    # ── Writes ──────────────────────────────────────────────────

    def create(self, name: str, mime_type: str, properties: dict,
               content: bytes) -> RemoteBlob:
        blob = RemoteBlob(
            id=uuid.uuid4().hex,
            name=name,
            mime_type=mime_type,
            properties={k: str(v) for k, v in properties.items()},
        )
        self._write(blob, content)
        logger.info("Created remote blob %s (%s)", blob.id, name)
        return blob

    def update(self, blob_id: str, properties: dict,
               content: bytes) -> RemoteBlob:
        blob = self._read_meta(blob_id)
        blob.properties.update({k: str(v) for k, v in properties.items()})
        self._write(blob, content)
        logger.info("Updated remote blob %s", blob_id)
        return blob

    # ── Helpers ─────────────────────────────────────────────────

    def _content_path(self, blob_id: str) -> Path:
        return self.root / f"{blob_id}{self.CONTENT_SUFFIX}"

    def _meta_path(self, blob_id: str) -> Path:
        return self.root / f"{blob_id}{self.META_SUFFIX}"

    def _read_meta(self, blob_id: str) -> RemoteBlob:
        path = self._meta_path(blob_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise RemoteNotFound(f"Blob {blob_id} not found") from e
        except (json.JSONDecodeError, OSError) as e:
            raise RemoteError(f"Cannot read blob {blob_id}: {e}") from e
        return RemoteBlob(
            id=blob_id,
            name=data.get("name", ""),
            mime_type=data.get("mime_type", ""),
            properties=dict(data.get("properties") or {}),
            modified_time=data.get("modified_time", ""),
        )

    def _write(self, blob: RemoteBlob, content: bytes):
        blob.modified_time = datetime.now(timezone.utc).isoformat()
        meta = {
            "name": blob.name,
            "mime_type": blob.mime_type,
            "properties": blob.properties,
            "modified_time": blob.modified_time,
        }
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._atomic_write(self._content_path(blob.id), content)
            self._atomic_write(
                self._meta_path(blob.id),
                json.dumps(meta, indent=2).encode("utf-8"),
            )
        except OSError as e:
            raise RemoteError(f"Cannot write blob {blob.id}: {e}") from e

    def _atomic_write(self, path: Path, data: bytes):
        fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
