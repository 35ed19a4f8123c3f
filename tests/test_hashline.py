from __future__ import annotations

import pytest

from anchorline.editing.hashline import (
    Anchor,
    FileLines,
    Line,
    format_hashlines,
    line_hash,
    replacement_lines,
)


def test_line_hash_folds_fnv1a():
    # FNV-1a 64 offset basis and the published vector for "a", folded
    assert line_hash("") == "f011"
    assert line_hash("a") == "19a2"


def test_single_character_lines_hash_apart():
    hashes = {line_hash(ch) for ch in "abcx"}
    assert len(hashes) == 4


def test_line_hash_is_stable_and_short():
    first = line_hash("def main():")
    assert first == line_hash("def main():")
    assert len(first) == 4
    assert all(ch in "0123456789abcdef" for ch in first)
    assert line_hash("def main():") != line_hash("def main(): ")


def test_line_renders_as_hashline():
    line = Line(index=3, hash=line_hash("x = 1"), content="x = 1")
    assert line.hashline() == f"3:{line.hash}|x = 1"
    assert line.anchor() == Anchor(3, line.hash)
    assert format_hashlines([line, Line(4, "abcd", "")]) == f"3:{line.hash}|x = 1\n4:abcd|"


def test_anchor_parse_accepts_prefixes_and_pasted_records():
    assert Anchor.parse("12:AB3F") == Anchor(12, "ab3f")
    assert Anchor.parse(" 2:ab ") == Anchor(2, "ab")
    assert Anchor.parse("5:ab12|print('hi')") == Anchor(5, "ab12")
    assert str(Anchor(7, "0f0f")) == "7:0f0f"


@pytest.mark.parametrize("raw", ["", "12", "x:ab12", "0:ab12", "-1:ab12", "3:a", "3:abcde", "3:zz"])
def test_anchor_parse_rejects_malformed(raw):
    with pytest.raises(ValueError):
        Anchor.parse(raw)


def test_anchor_matches_by_prefix():
    anchor = Anchor(1, "ab")
    assert anchor.matches("ab12")
    assert not anchor.matches("ac12")


def test_file_lines_tracks_line_ending_and_trailing_newline():
    lf = FileLines.parse("a\nb\n")
    assert lf.lines == ["a", "b"]
    assert lf.trailing_newline is True
    assert lf.render() == "a\nb\n"

    crlf = FileLines.parse("a\r\nb")
    assert crlf.lines == ["a", "b"]
    assert crlf.line_ending == "\r\n"
    assert crlf.trailing_newline is False
    assert crlf.render() == "a\r\nb"


def test_file_lines_empty_and_blank_last_line():
    assert FileLines.parse("").lines == []
    assert FileLines.parse("\n").lines == [""]
    assert FileLines.parse("a\n\n").lines == ["a", ""]
    assert FileLines.parse("a\n\n").render() == "a\n\n"


def test_replacement_lines():
    assert replacement_lines("") == [""]
    assert replacement_lines("x") == ["x"]
    assert replacement_lines("x\ny\n") == ["x", "y"]
    assert replacement_lines("x\r\ny") == ["x", "y"]
    assert replacement_lines("\n") == [""]


def test_file_lines_keep_each_line_terminator():
    mixed = FileLines.parse("a\n\nb\r\nc")

    assert mixed.lines == ["a", "", "b", "c"]
    assert mixed.endings == ["\n", "\n", "\r\n", ""]
    assert mixed.line_ending == "\r\n"
    assert mixed.render() == "a\n\nb\r\nc"
