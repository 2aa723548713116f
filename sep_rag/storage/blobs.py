"""Filesystem blob store for generation-format chunk text."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path | str, data: bytes) -> None:
    """Atomically write ``data`` to ``path`` using a temporary file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=target.name, dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as tmp_file:
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.replace(tmp_path, target)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def atomic_write_text(path: Path | str, text: str, encoding: str = "utf-8") -> None:
    """Atomically write ``text`` to ``path`` using UTF-8 by default."""

    atomic_write_bytes(path, text.encode(encoding))


class BlobStore:
    """Key/value text storage rooted at a directory.

    Keys are ``/``-separated relative paths such as ``chunks/{chunk_id}.txt``.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        relative = Path(key.lstrip("/"))
        if ".." in relative.parts:
            raise ValueError(f"Invalid blob key: {key}")
        return self.root / relative

    def put_text(self, key: str, text: str) -> None:
        atomic_write_text(self._path(key), text)

    def get_text(self, key: str) -> str:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise KeyError(key) from None

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list_keys(self, prefix: str) -> list[str]:
        """Return the keys of every blob under the directory ``prefix``, sorted."""

        target = self._path(prefix)
        if not target.is_dir():
            return []
        return sorted(
            path.relative_to(self.root).as_posix() for path in target.rglob("*") if path.is_file()
        )

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted blob %s", key)
        return True
