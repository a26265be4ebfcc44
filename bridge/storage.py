"""
EnergyBridge — Object Blob Store
Filesystem-backed key → bytes store with small string metadata, modelled on
an S3/R2 bucket: ``get``, ``put`` and ``list`` with prefix.

Layout
------
    <root>/objects/<key>        object body
    <root>/meta/<key>.json      {"metadata": {...}, "content_type": ..., "cache_control": ...}

Bodies and metadata are written to a temp file and moved into place with
``os.replace``, so a reader sees either the old or the new object, never a
partial one.  There is no locking: concurrent writers of the same key are
last-writer-wins.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(RuntimeError):
    """Raised when the blob store cannot be read or written."""


@dataclass
class ObjectInfo:
    """Listing entry: key plus its custom metadata (no body)."""

    key: str
    size: int
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StoredObject:
    key: str
    body: bytes
    metadata: dict[str, str] = field(default_factory=dict)
    content_type: str = DEFAULT_CONTENT_TYPE
    cache_control: Optional[str] = None

    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise StorageError(f"Object {self.key!r} is not valid JSON: {exc}") from exc


class FileBlobStore:
    """
    Blob store rooted at a local directory.

    Parameters
    ----------
    root:
        Directory holding the ``objects/`` and ``meta/`` trees. Created on
        first use.
    """

    def __init__(self, root: str | os.PathLike) -> None:
        self._root = Path(root)
        self._objects = self._root / "objects"
        self._meta = self._root / "meta"

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_key(key: str) -> None:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid object key {key!r}")

    def _object_path(self, key: str) -> Path:
        self._check_key(key)
        return self._objects / key

    def _meta_path(self, key: str) -> Path:
        self._check_key(key)
        return self._meta / f"{key}.json"

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _read_meta(self, key: str) -> dict[str, Any]:
        path = self._meta_path(key)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise StorageError(f"Corrupt metadata for {key!r}: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[StoredObject]:
        """Return the object stored under *key*, or None when absent."""
        path = self._object_path(key)
        try:
            body = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {key!r}: {exc}") from exc

        try:
            meta = self._read_meta(key)
        except OSError as exc:
            raise StorageError(f"Failed to read metadata for {key!r}: {exc}") from exc
        return StoredObject(
            key=key,
            body=body,
            metadata=dict(meta.get("metadata", {})),
            content_type=meta.get("content_type", DEFAULT_CONTENT_TYPE),
            cache_control=meta.get("cache_control"),
        )

    def put(
        self,
        key: str,
        body: bytes | str,
        metadata: Optional[dict[str, str]] = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
        cache_control: Optional[str] = None,
    ) -> None:
        """Store *body* under *key*, replacing any previous object and its metadata."""
        data = body.encode("utf-8") if isinstance(body, str) else body
        meta = {
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
            "content_type": content_type,
            "cache_control": cache_control,
        }
        try:
            self._atomic_write(self._meta_path(key), json.dumps(meta).encode("utf-8"))
            self._atomic_write(self._object_path(key), data)
        except OSError as exc:
            raise StorageError(f"Failed to write {key!r}: {exc}") from exc
        logger.debug("Stored {} ({} bytes).", key, len(data))

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        """List objects whose key starts with *prefix*, sorted by key, with metadata."""
        if not self._objects.exists():
            return []
        try:
            entries: list[ObjectInfo] = []
            for path in sorted(self._objects.iterdir()):
                key = path.name
                if key.startswith(".") or not key.startswith(prefix) or not path.is_file():
                    continue
                meta = self._read_meta(key)
                entries.append(ObjectInfo(
                    key=key,
                    size=path.stat().st_size,
                    metadata=dict(meta.get("metadata", {})),
                ))
            return entries
        except OSError as exc:
            raise StorageError(f"Failed to list objects: {exc}") from exc
