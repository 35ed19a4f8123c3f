"""
Hashline primitives: per-line content hashes, anchors, and line splitting.

Each line is tagged with a short content hash so a model can point at a line
as ``"<line>:<hash>"`` instead of quoting it. If the file changed since the
model read it, the hash no longer matches and the edit is rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

HASH_PREFIX_LEN = 4
MIN_ANCHOR_HASH_LEN = 2

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

_HEX_RE = re.compile(r"^[0-9a-f]+$")


def line_hash(line: str) -> str:
    """Return the 4-char hex hash of a single line (FNV-1a 64-bit, xor-folded to 16 bits)."""
    value = _FNV_OFFSET
    for byte in line.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK_64
    folded = (value ^ (value >> 16) ^ (value >> 32) ^ (value >> 48)) & 0xFFFF
    return f"{folded:04x}"


@dataclass(frozen=True)
class Line:
    index: int  # 1-based
    hash: str
    content: str

    def hashline(self) -> str:
        return f"{self.index}:{self.hash}|{self.content}"

    def anchor(self) -> "Anchor":
        return Anchor(self.index, self.hash)


@dataclass(frozen=True)
class Anchor:
    """A (line, expected hash) claim against one file snapshot."""

    line: int
    hash: str

    def __str__(self) -> str:
        return f"{self.line}:{self.hash}"

    def matches(self, live_hash: str) -> bool:
        return live_hash.startswith(self.hash)

    @classmethod
    def parse(cls, raw: str) -> "Anchor":
        """Parse ``"12:ab3f"``. Raises ValueError on malformed input."""
        text = str(raw).strip()
        if ":" not in text:
            raise ValueError(f"invalid anchor {raw!r} (expected 'line:hash')")
        line_raw, hash_raw = text.split(":", 1)
        try:
            line_no = int(line_raw)
        except ValueError:
            raise ValueError(f"invalid line number in anchor {raw!r}") from None
        if line_no < 1:
            raise ValueError(f"invalid line number in anchor {raw!r}")

        prefix = hash_raw.strip().lower()
        # Tolerate a full hashline record being pasted back ("3:ab12|text").
        if "|" in prefix:
            prefix = prefix.split("|", 1)[0]
        if len(prefix) < MIN_ANCHOR_HASH_LEN:
            raise ValueError(f"invalid hash in anchor {raw!r} (minimum {MIN_ANCHOR_HASH_LEN} characters)")
        if len(prefix) > HASH_PREFIX_LEN:
            raise ValueError(f"invalid hash in anchor {raw!r} (maximum {HASH_PREFIX_LEN} characters)")
        if not _HEX_RE.match(prefix):
            raise ValueError(f"invalid hash in anchor {raw!r} (must be hex)")
        return cls(line_no, prefix)


@dataclass
class FileLines:
    """A file split into lines, remembering how to put it back together.

    ``endings[i]`` is the terminator line ``i`` had on disk (``"\\n"``,
    ``"\\r\\n"``, or ``""`` for a final line without one). An empty entry, or a
    missing one for lines added by an edit, means ``line_ending``: CRLF if the
    file contained any, LF otherwise.
    """

    lines: list[str] = field(default_factory=list)
    line_ending: str = "\n"
    trailing_newline: bool = False
    endings: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, content: str) -> "FileLines":
        line_ending = "\r\n" if "\r\n" in content else "\n"
        pieces = content.split("\n")
        trailing_newline = len(pieces) > 1 and pieces[-1] == ""
        if trailing_newline or not content:
            pieces.pop()
        lines: list[str] = []
        endings: list[str] = []
        for index, piece in enumerate(pieces):
            if index == len(pieces) - 1 and not trailing_newline:
                lines.append(piece)
                endings.append("")
            elif piece.endswith("\r"):
                lines.append(piece[:-1])
                endings.append("\r\n")
            else:
                lines.append(piece)
                endings.append("\n")
        return cls(lines=lines, line_ending=line_ending, trailing_newline=trailing_newline, endings=endings)

    def ending_of(self, index: int) -> str:
        if index == len(self.lines) - 1 and not self.trailing_newline:
            return ""
        ending = self.endings[index] if index < len(self.endings) else ""
        return ending or self.line_ending

    def render(self) -> str:
        return "".join(line + self.ending_of(index) for index, line in enumerate(self.lines))


def replacement_lines(content: str) -> list[str]:
    """Split replacement text into lines; empty text is one empty line."""
    normalized = content.replace("\r\n", "\n")
    if not normalized:
        return [""]
    lines = normalized.split("\n")
    if normalized.endswith("\n") and len(lines) > 1:
        lines.pop()
    return lines


def format_hashlines(lines: list[Line]) -> str:
    return "\n".join(line.hashline() for line in lines)
