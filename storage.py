"""
storage.py - Durable file storage, the document registry and per-id locks.

Uploads are immutable once written. Remediated output is written whole
(temp file + rename) and replaced on re-remediation, never patched.
"""
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Optional

import config
from errors import DocumentNotFound
from models import DocumentRecord

logger = logging.getLogger(__name__)


class DocumentStorage:
    """Uploads and remediated outputs on the local filesystem."""

    def __init__(self, upload_dir: Path = None, output_dir: Path = None):
        self.upload_dir = Path(upload_dir or config.UPLOADS_DIR)
        self.output_dir = Path(output_dir or config.OUTPUT_DIR)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def upload_path(self, document_id: str) -> Path:
        return self.upload_dir / f"{_safe_id(document_id)}.pdf"

    def output_path(self, document_id: str) -> Path:
        return self.output_dir / f"{_safe_id(document_id)}_remediated.pdf"

    def save_upload(self, data: bytes, document_id: str = None) -> str:
        """Store an upload under a new random id (or the one given)."""
        document_id = document_id or uuid.uuid4().hex
        path = self.upload_path(document_id)
        if path.exists():
            raise FileExistsError(f"Upload {document_id} already exists")
        _atomic_write(path, data)
        logger.debug("Stored upload %s (%d bytes)", document_id, len(data))
        return document_id

    def read_upload(self, document_id: str) -> bytes:
        path = self.upload_path(document_id)
        if not path.is_file():
            raise DocumentNotFound(f"No upload for document {document_id}")
        return path.read_bytes()

    def write_output(self, document_id: str, data: bytes) -> Path:
        path = self.output_path(document_id)
        _atomic_write(path, data)
        logger.debug("Wrote remediated output %s (%d bytes)", path.name, len(data))
        return path

    def read_output(self, document_id: str) -> bytes:
        path = self.output_path(document_id)
        if not path.is_file():
            raise DocumentNotFound(f"No remediated output for document {document_id}")
        return path.read_bytes()

    def output_exists(self, document_id: str) -> bool:
        return self.output_path(document_id).is_file()

    def delete(self, document_id: str):
        for path in (self.upload_path(document_id), self.output_path(document_id)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to clean up %s: %s", path, e)


def _safe_id(document_id: str) -> str:
    if not document_id or Path(document_id).name != document_id or document_id.startswith("."):
        raise ValueError(f"Invalid document id: {document_id!r}")
    return document_id


def _atomic_write(path: Path, data: bytes):
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=path.suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class DocumentStore:
    """Thread-safe in-memory registry of document records."""

    def __init__(self):
        self._documents = {}
        self._lock = threading.Lock()

    def set(self, record: DocumentRecord):
        with self._lock:
            self._documents[record.id] = record

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            return self._documents.get(document_id)

    def require(self, document_id: str) -> DocumentRecord:
        record = self.get(document_id)
        if record is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return record

    def update(self, document_id: str, **changes) -> Optional[DocumentRecord]:
        """Replace fields on a record; returns the updated copy."""
        with self._lock:
            record = self._documents.get(document_id)
            if record is None:
                return None
            updated = replace(record, **changes)
            self._documents[document_id] = updated
            return updated

    def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    def all(self) -> list:
        with self._lock:
            return list(self._documents.values())


class KeyedLock:
    """One lock per key, so work on the same document never overlaps.

    A key's lock is dropped once no thread holds or waits for it.
    """

    def __init__(self):
        # key -> [lock, number of holders and waiters]
        self._locks = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str):
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: float = -1):
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                raise TimeoutError(f"Document {key} is busy")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)
