"""
Submission File Store — where member uploads live on disk.

The workflow only needs save() and delete(); LocalFileStore keeps files
under one root directory with collision-free, sanitized names and enforces
the configured size and MIME limits.

Config:
    clubdocs.yaml → files.upload_dir, files.max_upload_size_mb,
                    files.allowed_mime_types
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol

from clubdocs.engine.errors import ClubDocsValidationError

logger = logging.getLogger("clubdocs.integrations.file_store")

CHUNK_SIZE = 8192


@dataclass(frozen=True)
class StoredFile:
    path: str
    name: str
    size: int
    mime_type: str


class FileStore(Protocol):
    def save(self, data: BinaryIO, filename: str, mime_type: Optional[str] = None) -> StoredFile:
        ...

    def delete(self, path: str) -> bool:
        ...


class LocalFileStore:
    """Filesystem-backed FileStore rooted at a single directory."""

    def __init__(
        self,
        root: str,
        max_upload_size_mb: int = 10,
        allowed_mime_types: Optional[List[str]] = None,
    ):
        self._root = Path(root)
        self._max_bytes = max_upload_size_mb * 1024 * 1024
        self._max_upload_size_mb = max_upload_size_mb
        self._allowed = [m.lower() for m in allowed_mime_types] if allowed_mime_types else None
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def save(self, data: BinaryIO, filename: str, mime_type: Optional[str] = None) -> StoredFile:
        """
        Stream an upload to disk.

        Raises:
            ClubDocsValidationError: MIME type not allowed, or the stream
                exceeds max_upload_size_mb (the partial file is removed).
        """
        mime_type = (mime_type or self.detect_mime_type(filename)).lower()
        if self._allowed is not None and mime_type not in self._allowed:
            raise ClubDocsValidationError(
                f"File type '{mime_type}' not allowed. Allowed: {self._allowed}",
                field="file",
            )

        safe_name = self._safe_filename(filename)
        stem, ext = os.path.splitext(safe_name)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        relative = f"{stem}-{stamp}-{uuid.uuid4().hex[:8]}{ext}"
        physical = self._root / relative

        written = 0
        digest = hashlib.sha256()
        try:
            with open(physical, "wb") as f:
                while True:
                    chunk = data.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self._max_bytes:
                        raise ClubDocsValidationError(
                            f"File exceeds upload limit ({self._max_upload_size_mb} MB)",
                            field="file",
                        )
                    f.write(chunk)
                    digest.update(chunk)
        except ClubDocsValidationError:
            physical.unlink(missing_ok=True)
            raise

        logger.info(f"Stored upload {relative} ({written} bytes, sha256={digest.hexdigest()[:12]})")
        return StoredFile(path=relative, name=safe_name, size=written, mime_type=mime_type)

    def delete(self, path: str) -> bool:
        """Remove a stored file. False if it was already gone or lies outside the root."""
        target = self.resolve(path)
        if target is None or not target.is_file():
            return False
        try:
            target.unlink()
        except OSError as e:
            logger.error(f"Failed to delete {target}: {e}")
            return False
        logger.info(f"Deleted stored file {path}")
        return True

    def exists(self, path: str) -> bool:
        target = self.resolve(path)
        return target is not None and target.is_file()

    def resolve(self, path: str) -> Optional[Path]:
        """Physical path for a stored relative path, None if it escapes the root."""
        candidate = (self._root / path).resolve()
        root = self._root.resolve()
        if candidate != root and root not in candidate.parents:
            return None
        return candidate

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """
        Sanitize an uploaded filename.

        Strips directories, control and reserved characters, folds
        whitespace into underscores and keeps the extension within 200 chars.
        """
        name = os.path.basename(filename.replace("\\", "/"))
        name = "".join(
            c if c.isprintable() and c not in '<>:"/\\|?*' else "_" for c in name
        )
        name = "_".join(name.split())
        while "__" in name:
            name = name.replace("__", "_")
        name = name.lstrip(".")
        if not name or name == "_":
            name = "file"
        if len(name) > 200:
            base, ext = os.path.splitext(name)
            name = base[:200 - len(ext)] + ext
        return name

    @staticmethod
    def detect_mime_type(filename: str) -> str:
        mime, _ = mimetypes.guess_type(filename)
        return mime or "application/octet-stream"

    def __repr__(self) -> str:
        return f"<LocalFileStore root='{self._root}'>"
