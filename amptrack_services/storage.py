"""
Filesystem artifact store.

Keys are relative paths (``invoice/<id>/r3.pdf``).  Writes go to a sibling
temporary file and are moved into place with ``os.replace``, so a reader
never sees a partially written artifact.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from amptrack_kernel.logging_config import get_logger

logger = get_logger("services.storage")


class LocalArtifactStore:
    """ArtifactStore backed by a directory."""

    available = True

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"artifact key escapes the store root: {key!r}")
        return path

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=path.suffix)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("artifact_stored", extra={"artifact_key": key, "size_bytes": len(data)})

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("artifact_deleted", extra={"artifact_key": key})

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()
