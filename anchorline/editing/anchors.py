"""
Anchor validation against live file content.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .hashline import Anchor, line_hash
from .view import load_file_lines

HASH_MISMATCH = "hash_mismatch"
INDEX_OUT_OF_RANGE = "index_out_of_range"


@dataclass(frozen=True)
class AnchorCheck:
    anchor: Anchor
    valid: bool
    reason: str | None = None
    actual_hash: str | None = None
    actual_content: str | None = None

    @property
    def stale(self) -> bool:
        return not self.valid

    def to_dict(self) -> dict[str, object]:
        return {
            "anchor": str(self.anchor),
            "status": "valid" if self.valid else "stale",
            "reason": self.reason,
            "actual_hash": self.actual_hash,
        }


def check_lines(lines: Sequence[str], anchors: Iterable[Anchor]) -> list[AnchorCheck]:
    """Check anchors against an already-read snapshot of lines."""
    results: list[AnchorCheck] = []
    for anchor in anchors:
        if anchor.line < 1 or anchor.line > len(lines):
            results.append(AnchorCheck(anchor=anchor, valid=False, reason=INDEX_OUT_OF_RANGE))
            continue
        content = lines[anchor.line - 1]
        live = line_hash(content)
        if anchor.matches(live):
            results.append(AnchorCheck(anchor=anchor, valid=True, actual_hash=live))
        else:
            results.append(
                AnchorCheck(
                    anchor=anchor,
                    valid=False,
                    reason=HASH_MISMATCH,
                    actual_hash=live,
                    actual_content=content,
                )
            )
    return results


class AnchorValidator:
    """Pure check of anchors against the file as it is right now."""

    def check(self, path: Path | str, anchors: Iterable[Anchor]) -> list[AnchorCheck]:
        snapshot = load_file_lines(Path(path))
        return check_lines(snapshot.lines, anchors)

    def check_lines(self, lines: Sequence[str], anchors: Iterable[Anchor]) -> list[AnchorCheck]:
        return check_lines(lines, anchors)

    def all_valid(self, path: Path | str, anchors: Iterable[Anchor]) -> bool:
        return all(result.valid for result in self.check(path, anchors))
