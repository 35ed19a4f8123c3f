"""
Atomic application of an edit batch to one file.

All anchors in a batch are validated against a single snapshot before
anything is touched. Line operations are then replayed against an in-memory
working copy, translating each operation's original-snapshot position by the
net line delta of the operations applied before it. The working copy is
written back with one temp-file + ``os.replace``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import (
    DestinationExistsError,
    FileIOError,
    InvalidBatchError,
    NotAFileError,
    NotFoundError,
    StaleAnchorError,
)
from .anchors import AnchorValidator
from .hashline import FileLines, replacement_lines
from .operations import (
    WHOLE_FILE_OPERATIONS,
    Delete,
    DeleteFile,
    DeleteRange,
    EditOperation,
    InsertAfter,
    InsertBefore,
    MoveFile,
    Replace,
    ReplaceRange,
    RewriteFile,
    operation_anchors,
    operation_kind,
)
from .view import read_text

logger = logging.getLogger(__name__)


@dataclass
class EditResult:
    path: str
    changed: bool
    operations_applied: int
    lines_before: int | None = None
    lines_after: int | None = None
    dest_path: str | None = None
    deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "changed": self.changed,
            "operations_applied": self.operations_applied,
            "lines_before": self.lines_before,
            "lines_after": self.lines_after,
            "dest_path": self.dest_path,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class _Span:
    """A line operation in original-snapshot gap coordinates: ``[start, end)``."""

    op_index: int
    start: int
    end: int
    new_lines: tuple[str, ...]

    @property
    def is_insert(self) -> bool:
        return self.start == self.end

    @property
    def delta(self) -> int:
        return len(self.new_lines) - (self.end - self.start)

    def conflicts_with(self, other: "_Span") -> bool:
        if self.is_insert and other.is_insert:
            return False
        if self.is_insert:
            return other.start < self.start < other.end
        if other.is_insert:
            return self.start < other.start < self.end
        return self.start < other.end and other.start < self.end


def _to_span(index: int, op: EditOperation) -> _Span:
    if isinstance(op, Replace):
        return _Span(index, op.anchor.line - 1, op.anchor.line, tuple(replacement_lines(op.new_content)))
    if isinstance(op, InsertBefore):
        gap = op.anchor.line - 1
        return _Span(index, gap, gap, tuple(replacement_lines(op.new_content)))
    if isinstance(op, InsertAfter):
        gap = op.anchor.line
        return _Span(index, gap, gap, tuple(replacement_lines(op.new_content)))
    if isinstance(op, Delete):
        return _Span(index, op.anchor.line - 1, op.anchor.line, ())
    if isinstance(op, ReplaceRange):
        return _Span(index, op.start.line - 1, op.end.line, tuple(replacement_lines(op.new_content)))
    if isinstance(op, DeleteRange):
        return _Span(index, op.start.line - 1, op.end.line, ())
    raise TypeError(f"not a line operation: {op!r}")


def apply_spans(snapshot: FileLines, spans: Iterable[_Span]) -> FileLines:
    """Replay spans in order over a copy of ``snapshot`` (offset-accumulator pass).

    Replacement lines keep the terminators of the lines they replace, in
    order; lines beyond those take the file's default ending.
    """
    working = list(snapshot.lines)
    endings = [snapshot.endings[i] if i < len(snapshot.endings) else "" for i in range(len(working))]
    applied: list[_Span] = []
    for span in spans:
        for prev in applied:
            if span.conflicts_with(prev):
                raise InvalidBatchError(
                    f"overlaps lines already changed by operation {prev.op_index}",
                    operation_index=span.op_index,
                )
        shift = sum(prev.delta for prev in applied if prev.end <= span.start)
        pos = span.start + shift
        width = span.end - span.start
        replaced = endings[pos : pos + width]
        working[pos : pos + width] = span.new_lines
        endings[pos : pos + width] = [
            replaced[i] if i < len(replaced) else "" for i in range(len(span.new_lines))
        ]
        applied.append(span)
    return FileLines(
        lines=working,
        line_ending=snapshot.line_ending,
        trailing_newline=snapshot.trailing_newline,
        endings=endings,
    )


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def atomic_write(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` in one rename."""
    data = content.encode("utf-8")
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if path.exists():
            shutil.copymode(path, tmp_path)
        else:
            # mkstemp creates 0600; new files follow the umask instead
            os.chmod(tmp_path, 0o666 & ~_current_umask())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise FileIOError(f"{path}: {exc}") from exc


class EditApplier:
    """Validates and applies edit batches; one filesystem mutation per batch."""

    def __init__(self, validator: AnchorValidator | None = None):
        self.validator = validator or AnchorValidator()

    def apply(self, path: Path | str, batch: Iterable[EditOperation]) -> EditResult:
        target = Path(path)
        ops = list(batch)
        self._check_shape(ops)

        head = ops[0]
        if isinstance(head, RewriteFile):
            return self._rewrite(target, head)
        if isinstance(head, MoveFile):
            return self._move(target, head)
        if isinstance(head, DeleteFile):
            return self._delete(target)
        return self._apply_lines(target, ops)

    # ---------------------------------------------------------------------

    @staticmethod
    def _check_shape(ops: list[EditOperation]) -> None:
        if not ops:
            raise InvalidBatchError("edit batch is empty")
        for index, op in enumerate(ops):
            if isinstance(op, WHOLE_FILE_OPERATIONS) and len(ops) > 1:
                raise InvalidBatchError(
                    f"{operation_kind(op)} must be the only operation in its batch",
                    operation_index=index,
                )

    def _apply_lines(self, target: Path, ops: list[EditOperation]) -> EditResult:
        before = read_text(target)
        snapshot = FileLines.parse(before)

        for index, op in enumerate(ops):
            for check in self.validator.check_lines(snapshot.lines, operation_anchors(op)):
                if check.stale:
                    logger.debug("stale anchor %s in operation %d on %s: %s", check.anchor, index, target, check.reason)
                    raise StaleAnchorError(index, check.anchor, check.reason or "", actual_hash=check.actual_hash)

        for index, op in enumerate(ops):
            if isinstance(op, (ReplaceRange, DeleteRange)) and op.start.line > op.end.line:
                raise InvalidBatchError(
                    f"range start line {op.start.line} is after end line {op.end.line}",
                    operation_index=index,
                )

        updated = apply_spans(snapshot, (_to_span(index, op) for index, op in enumerate(ops)))
        after = updated.render()
        changed = after != before
        if changed:
            atomic_write(target, after)
        logger.info("applied %d operation(s) to %s (changed=%s)", len(ops), target, changed)
        return EditResult(
            path=str(target),
            changed=changed,
            operations_applied=len(ops),
            lines_before=len(snapshot.lines),
            lines_after=len(updated.lines),
        )

    def _rewrite(self, target: Path, op: RewriteFile) -> EditResult:
        lines_before: int | None = None
        before: str | None = None
        if target.exists():
            before = read_text(target)
            lines_before = len(FileLines.parse(before).lines)
        elif not target.parent.is_dir():
            raise NotFoundError(f"parent directory not found: {target.parent}")

        changed = before != op.new_content
        if changed:
            atomic_write(target, op.new_content)
        logger.info("rewrote %s (changed=%s)", target, changed)
        return EditResult(
            path=str(target),
            changed=changed,
            operations_applied=1,
            lines_before=lines_before,
            lines_after=len(FileLines.parse(op.new_content).lines),
        )

    def _move(self, target: Path, op: MoveFile) -> EditResult:
        self._require_file(target)
        dest = Path(op.dest_path)
        if dest.resolve() == target.resolve():
            raise InvalidBatchError("move destination is the source file", operation_index=0)
        if dest.exists():
            if not op.overwrite:
                raise DestinationExistsError(f"destination already exists: {dest}")
            if not dest.is_file():
                raise NotAFileError(f"destination is not a file: {dest}")
        if not dest.parent.is_dir():
            raise NotFoundError(f"destination directory not found: {dest.parent}")
        try:
            os.replace(target, dest)
        except OSError as exc:
            raise FileIOError(f"move {target} -> {dest}: {exc}") from exc
        logger.info("moved %s -> %s", target, dest)
        return EditResult(path=str(target), changed=True, operations_applied=1, dest_path=str(dest))

    def _delete(self, target: Path) -> EditResult:
        self._require_file(target)
        try:
            target.unlink()
        except OSError as exc:
            raise FileIOError(f"{target}: {exc}") from exc
        logger.info("deleted %s", target)
        return EditResult(path=str(target), changed=True, operations_applied=1, deleted=True)

    @staticmethod
    def _require_file(target: Path) -> None:
        if not target.exists():
            raise NotFoundError(f"file not found: {target}")
        if not target.is_file():
            raise NotAFileError(f"not a file: {target}")
