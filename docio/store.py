"""
Document store - local, file-backed implementation of the document
operations handles are written for.

Storage layout:
    $DOCIO_HOME/data/<sha256(uri)>.bin   - document payloads
    $DOCIO_HOME/index.json               - uri -> mimetype, format, size, properties

All writes are atomic (temp file + os.replace) for crash safety. Payloads
are addressed by a hash of the uri so a uri can never escape the data
directory.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from docio import MIMETYPE_BINARY, STORE_HOME_ENV, STORE_MAX_DOCUMENT_BYTES
from docio.errors import DocIOError, InvalidArgumentError, ResourceNotFoundError
from docio.handles.base import BaseHandle, BufferableHandle
from docio.ids import DocumentIdentifier
from docio.metadata import (
    MetadataExtraction, build_metadata_document, extract_properties, metadata_to_bytes,
)

logger = logging.getLogger(__name__)

# Default store root when neither an explicit root nor $DOCIO_HOME is set
_DEFAULT_ROOT = Path.home() / ".docio"


class DocumentStoreError(DocIOError):
    """Error in document store operations."""


class DocumentStore:
    """File-based document store that reads and writes through handles.

    Usage:
        store = DocumentStore()
        store.write(DocumentIdentifier("/img/logo.png", "image/png"), BytesHandle().with_content(data))
        data = store.read(DocumentIdentifier("/img/logo.png"), BytesHandle()).get()
        meta = store.read_metadata(DocumentIdentifier("/img/logo.png"), ElementHandle())
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        metadata_extraction: MetadataExtraction = MetadataExtraction.PROPERTIES,
        max_document_size: int = STORE_MAX_DOCUMENT_BYTES,
    ) -> None:
        if root is None:
            root = os.environ.get(STORE_HOME_ENV) or _DEFAULT_ROOT
        self.root = Path(root)
        self.data_dir = self.root / "data"
        self.index_path = self.root / "index.json"
        self.metadata_extraction = metadata_extraction
        self.max_document_size = max_document_size
        self._lock = threading.Lock()

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _key_for(uri: str) -> str:
        return hashlib.sha256(uri.encode("utf-8")).hexdigest()

    def _path_for(self, uri: str) -> Path:
        return self.data_dir / f"{self._key_for(uri)}.bin"

    def _read_index(self) -> dict[str, dict[str, Any]]:
        """Read the JSON index. Returns empty dict if missing or corrupt."""
        if not self.index_path.is_file():
            return {}
        try:
            index = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable store index %s", self.index_path)
            return {}
        return index if isinstance(index, dict) else {}

    def _atomic_write(self, dest: Path, data: bytes, prefix: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(dest.parent), suffix=".tmp", prefix=prefix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, str(dest))
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _write_index(self, index: dict[str, dict[str, Any]]) -> None:
        self._ensure_dirs()
        data = json.dumps(index, indent=2, sort_keys=True).encode("utf-8")
        self._atomic_write(self.index_path, data, ".index_")

    def _entry(self, doc_id: DocumentIdentifier) -> dict[str, Any]:
        entry = self._read_index().get(doc_id.uri)
        if entry is None or not self._path_for(doc_id.uri).is_file():
            raise ResourceNotFoundError(f"Document not found: {doc_id.uri}")
        return entry

    @staticmethod
    def _payload_of(handle: BaseHandle) -> bytes:
        if isinstance(handle, BufferableHandle):
            payload = handle.to_buffer()
            if payload is not None:
                return bytes(payload)
        # Empty handles raise their own IllegalStateError here
        sender = handle.send_content()
        if isinstance(sender, (bytes, bytearray)):
            return bytes(sender)
        buffer = io.BytesIO()
        sender.write(buffer)
        return buffer.getvalue()

    @staticmethod
    def _fill(handle: BaseHandle, data: bytes) -> None:
        if not data and isinstance(handle, BufferableHandle):
            handle.from_buffer(data)
        elif handle.receive_as() is bytes:
            handle.receive_content(data)
        else:
            handle.receive_content(io.BytesIO(data))

    # --- document operations ---

    def write(self, doc_id: DocumentIdentifier, handle: BaseHandle) -> None:
        """Write the handle's content as the document at ``doc_id``.

        The mimetype comes from the identifier, else the handle, else the
        handle format's default.
        """
        payload = self._payload_of(handle)
        if len(payload) > self.max_document_size:
            raise DocumentStoreError(
                f"Document size {len(payload)} exceeds maximum {self.max_document_size} bytes"
            )
        mimetype = (
            doc_id.mimetype or handle.mimetype
            or handle.format.default_mimetype or MIMETYPE_BINARY
        )

        with self._lock:
            self._ensure_dirs()
            self._atomic_write(self._path_for(doc_id.uri), payload, ".doc_")
            index = self._read_index()
            entry: dict[str, Any] = {
                "key": self._key_for(doc_id.uri),
                "mimetype": mimetype,
                "format": handle.format.value,
                "size": len(payload),
                "stored_at": datetime.now(timezone.utc).isoformat(),
                "properties": {},
            }
            if self.metadata_extraction is MetadataExtraction.PROPERTIES:
                entry["properties"] = extract_properties(mimetype, len(payload))
            index[doc_id.uri] = entry
            self._write_index(index)
        logger.debug("Wrote %s (%d bytes, %s)", doc_id.uri, len(payload), mimetype)

    def read(
        self,
        doc_id: DocumentIdentifier,
        handle: BaseHandle,
        start: int | None = None,
        length: int | None = None,
    ) -> BaseHandle:
        """Fill ``handle`` with the document, or with ``length`` bytes from ``start``.

        A range running past the end of the document is truncated.
        """
        if (start is not None and start < 0) or (length is not None and length < 0):
            raise InvalidArgumentError(f"Invalid range: start={start}, length={length}")
        entry = self._entry(doc_id)
        with open(self._path_for(doc_id.uri), "rb") as f:
            if start:
                f.seek(start)
            data = f.read() if length is None else f.read(length)

        handle.set_mimetype(entry.get("mimetype"))
        self._fill(handle, data)
        logger.debug("Read %s (%d bytes)", doc_id.uri, len(data))
        return handle

    def read_metadata(self, doc_id: DocumentIdentifier, handle: BaseHandle) -> BaseHandle:
        """Fill ``handle`` with the document's metadata document (XML)."""
        entry = self._entry(doc_id)
        root = build_metadata_document(doc_id.uri, entry.get("properties") or {})
        self._fill(handle, metadata_to_bytes(root))
        return handle

    def exists(self, doc_id: DocumentIdentifier) -> bool:
        return doc_id.uri in self._read_index() and self._path_for(doc_id.uri).is_file()

    def delete(self, doc_id: DocumentIdentifier) -> None:
        """Remove a document. Raises ResourceNotFoundError if absent."""
        with self._lock:
            index = self._read_index()
            if doc_id.uri not in index:
                raise ResourceNotFoundError(f"Document not found: {doc_id.uri}")
            del index[doc_id.uri]
            self._write_index(index)
            try:
                self._path_for(doc_id.uri).unlink()
            except FileNotFoundError:
                pass
        logger.info("Deleted %s", doc_id.uri)

    def list(self) -> list[dict[str, Any]]:
        """List stored documents with their index entries, sorted by uri."""
        result = []
        for uri, entry in sorted(self._read_index().items()):
            item = {"uri": uri}
            item.update(entry)
            result.append(item)
        return result
