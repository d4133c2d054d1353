"""Block storage rooted at a directory (the logger's "SD card").

Paths are relative to the root and use ``/`` separators. Failures are
logged and reported through return values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)


class Storage:
    """Files and folders under a single root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def available(self) -> bool:
        """True if the root exists and is writable."""
        return self._root.is_dir() and os.access(self._root, os.W_OK)

    def _resolve(self, path: str) -> Path:
        resolved = (self._root / path).resolve()
        if resolved != self._root.resolve() and self._root.resolve() not in resolved.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return resolved

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def mkdir(self, path: str) -> bool:
        try:
            self._resolve(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create folder %s: %s", path, e)
            return False
        return True

    def open(self, path: str, mode: str = "r") -> IO[str] | None:
        """Open a text file, or return None if it cannot be opened.

        Mode ``x`` creates the file and fails if it already exists.
        """
        try:
            return open(
                self._resolve(path),
                mode,
                encoding="utf-8",
                errors="replace",
                newline="",
            )
        except OSError as e:
            logger.error("Cannot open %s (%s): %s", path, mode, e)
            return None

    def list_files(self, pattern: str = "**/*") -> list[dict]:
        """List files below the root with size and modification time."""
        files = []
        for path in sorted(self._root.glob(pattern)):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append({
                "path": path.relative_to(self._root).as_posix(),
                "size": stat.st_size,
                "modified": stat.st_mtime,
            })
        return files

    def read_bytes(self, path: str, offset: int = 0, length: int = -1) -> bytes:
        """Read up to ``length`` bytes of ``path`` starting at ``offset``."""
        with open(self._resolve(path), "rb") as f:
            f.seek(offset)
            return f.read(length)


def sync(handle: IO) -> None:
    """Flush ``handle`` through to durable storage."""
    handle.flush()
    os.fsync(handle.fileno())
