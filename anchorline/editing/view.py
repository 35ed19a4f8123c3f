"""
Paginated, hash-annotated reads of a file (the hashline view).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from ..errors import FileIOError, NotAFileError, NotFoundError
from .hashline import FileLines, Line, format_hashlines, line_hash

logger = logging.getLogger(__name__)

MAX_READ_LIMIT = 20_000


def read_text(path: Path) -> str:
    """Read ``path`` as UTF-8, mapping OS failures onto the error taxonomy."""
    if not path.exists():
        raise NotFoundError(f"file not found: {path}")
    if not path.is_file():
        raise NotAFileError(f"not a file: {path}")
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise FileIOError(f"{path}: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FileIOError(f"{path}: not valid UTF-8 text ({exc.reason} at byte {exc.start})") from exc


def load_file_lines(path: Path) -> FileLines:
    return FileLines.parse(read_text(path))


class FileView:
    """Side-effect free reader. Every call re-reads the file."""

    def __init__(self, max_limit: int = MAX_READ_LIMIT):
        if max_limit < 1:
            raise ValueError("max_limit must be positive")
        self.max_limit = max_limit

    def _window(self, offset: int, limit: int | None) -> tuple[int, int]:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit is None:
            return offset, self.max_limit
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        return offset, min(limit, self.max_limit)

    def read(self, path: Path | str, offset: int = 0, limit: int | None = None) -> list[Line]:
        return list(self.iter_lines(path, offset=offset, limit=limit))

    def iter_lines(self, path: Path | str, offset: int = 0, limit: int | None = None) -> Iterator[Line]:
        """Yield lines ``offset .. offset+limit`` of the current file content.

        The file is read eagerly so that errors surface on the first
        ``next()``; iterating again re-reads from disk.
        """
        start, count = self._window(offset, limit)
        snapshot = load_file_lines(Path(path))
        end = min(len(snapshot.lines), start + count)
        logger.debug("read %s lines %d..%d of %d", path, start + 1, end, len(snapshot.lines))
        for idx in range(start, end):
            content = snapshot.lines[idx]
            yield Line(index=idx + 1, hash=line_hash(content), content=content)

    def render(self, path: Path | str, offset: int = 0, limit: int | None = None) -> str:
        return format_hashlines(self.read(path, offset=offset, limit=limit))

    def total_lines(self, path: Path | str) -> int:
        return len(load_file_lines(Path(path)).lines)
