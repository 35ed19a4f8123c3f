from __future__ import annotations

import os
import stat

import pytest

from anchorline.editing import (
    Anchor,
    Delete,
    DeleteFile,
    DeleteRange,
    EditApplier,
    FileView,
    InsertAfter,
    InsertBefore,
    MoveFile,
    Replace,
    ReplaceRange,
    RewriteFile,
    line_hash,
)
from anchorline.errors import (
    DestinationExistsError,
    InvalidBatchError,
    NotAFileError,
    NotFoundError,
    StaleAnchorError,
)


def _write(path, lines):
    path.write_text("\n".join(lines) + "\n")
    return path


def _lines(path):
    return path.read_text().splitlines()


def _anchors(path):
    return [line.anchor() for line in FileView().read(path)]


def test_replace_line(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)
    assert a[1] == Anchor(2, line_hash("b"))

    result = EditApplier().apply(path, [Replace(a[1], "B")])

    assert _lines(path) == ["a", "B", "c"]
    assert result.changed
    assert result.operations_applied == 1
    assert (result.lines_before, result.lines_after) == (3, 3)


def test_stale_anchor_rejects_whole_batch(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)
    _write(path, ["a", "x", "c"])
    before = path.read_bytes()

    with pytest.raises(StaleAnchorError) as exc:
        EditApplier().apply(path, [Replace(a[1], "B")])

    assert exc.value.operation_index == 0
    assert exc.value.anchor == a[1]
    assert exc.value.reason == "hash_mismatch"
    assert exc.value.actual_hash == line_hash("x")
    assert exc.value.recoverable
    assert path.read_bytes() == before


def test_first_stale_operation_is_named(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)
    before = path.read_bytes()

    with pytest.raises(StaleAnchorError) as exc:
        EditApplier().apply(path, [Replace(a[0], "A"), Delete(Anchor(7, a[2].hash)), Replace(a[2], "C")])

    assert exc.value.operation_index == 1
    assert exc.value.reason == "index_out_of_range"
    assert path.read_bytes() == before


def test_whole_file_operation_must_be_alone(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b"])
    a = _anchors(path)
    before = path.read_bytes()

    with pytest.raises(InvalidBatchError) as exc:
        EditApplier().apply(path, [RewriteFile("x"), Delete(a[0])])

    assert exc.value.operation_index == 0
    assert path.read_bytes() == before


def test_empty_batch_is_invalid(tmp_path):
    path = _write(tmp_path / "f.txt", ["a"])
    with pytest.raises(InvalidBatchError):
        EditApplier().apply(path, [])


def test_replace_with_same_content_writes_nothing(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)
    mtime = path.stat().st_mtime_ns

    result = EditApplier().apply(path, [Replace(a[1], "b")])

    assert not result.changed
    assert path.read_text() == "a\nb\nc\n"
    assert path.stat().st_mtime_ns == mtime


def test_replacing_every_line_with_itself_round_trips(tmp_path):
    path = tmp_path / "mixed.txt"
    original = b"a\n\nb\r\nc"
    path.write_bytes(original)
    lines = FileView().read(path)

    result = EditApplier().apply(path, [Replace(line.anchor(), line.content) for line in lines])

    assert not result.changed
    assert path.read_bytes() == original
    assert [line.content for line in FileView().read(path)] == [line.content for line in lines]


def test_untouched_lines_keep_their_endings(tmp_path):
    path = tmp_path / "mixed.txt"
    path.write_bytes(b"one\ntwo\r\nthree\n")
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[1], "TWO"), InsertAfter(a[2], "four")])

    assert path.read_bytes() == b"one\nTWO\r\nthree\nfour\r\n"


def test_offsets_accumulate_across_operations(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c", "d", "e"])
    a = _anchors(path)

    EditApplier().apply(
        path,
        [InsertAfter(a[0], "x\ny"), Delete(a[2]), Replace(a[4], "E")],
    )

    assert _lines(path) == ["a", "x", "y", "b", "d", "E"]


def test_operations_in_reverse_file_order(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c", "d"])
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[3], "D1\nD2"), Delete(a[0]), InsertBefore(a[2], "new")])

    assert _lines(path) == ["b", "new", "c", "D1", "D2"]


def test_inserts_at_same_anchor_keep_request_order(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)

    EditApplier().apply(path, [InsertBefore(a[1], "1"), InsertBefore(a[1], "2"), InsertAfter(a[1], "3")])

    assert _lines(path) == ["a", "1", "2", "b", "3", "c"]


def test_insert_before_replaced_line_lands_before_replacement(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[1], "B"), InsertBefore(a[1], "x")])

    assert _lines(path) == ["a", "x", "B", "c"]


def test_overlapping_operations_are_invalid(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c", "d"])
    a = _anchors(path)
    before = path.read_bytes()

    with pytest.raises(InvalidBatchError) as exc:
        EditApplier().apply(path, [ReplaceRange(a[0], a[2], "X"), Delete(a[1])])
    assert exc.value.operation_index == 1

    with pytest.raises(InvalidBatchError):
        EditApplier().apply(path, [DeleteRange(a[1], a[3]), InsertAfter(a[1], "inside")])

    assert path.read_bytes() == before


def test_range_operations(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c", "d", "e"])
    a = _anchors(path)

    EditApplier().apply(path, [ReplaceRange(a[1], a[3], "X"), DeleteRange(a[4], a[4])])

    assert _lines(path) == ["a", "X"]


def test_range_start_after_end_is_invalid(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)

    with pytest.raises(InvalidBatchError) as exc:
        EditApplier().apply(path, [Replace(a[0], "A"), DeleteRange(a[2], a[1])])

    assert exc.value.operation_index == 1
    assert _lines(path) == ["a", "b", "c"]


def test_stale_check_runs_before_range_order_check(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)

    with pytest.raises(StaleAnchorError):
        EditApplier().apply(path, [DeleteRange(a[2], a[1]), Replace(Anchor(9, "ab"), "z")])


def test_replace_with_empty_content_leaves_blank_line(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[1], "")])

    assert path.read_text() == "a\n\nc\n"


def test_deleting_every_line_empties_file(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b"])
    a = _anchors(path)

    result = EditApplier().apply(path, [DeleteRange(a[0], a[1])])

    assert path.read_text() == ""
    assert result.lines_after == 0


def test_crlf_and_missing_trailing_newline_preserved(tmp_path):
    path = tmp_path / "win.txt"
    path.write_bytes(b"one\r\ntwo\r\nthree")
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[1], "TWO"), InsertAfter(a[2], "four")])

    assert path.read_bytes() == b"one\r\nTWO\r\nthree\r\nfour"


def test_file_mode_preserved(tmp_path):
    path = _write(tmp_path / "run.sh", ["#!/bin/sh", "echo hi"])
    os.chmod(path, 0o750)
    a = _anchors(path)

    EditApplier().apply(path, [Replace(a[1], "echo bye")])

    assert stat.S_IMODE(path.stat().st_mode) == 0o750
    assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]


def test_rewrite_file_is_idempotent(tmp_path):
    path = _write(tmp_path / "f.txt", ["old"])
    applier = EditApplier()

    first = applier.apply(path, [RewriteFile("new\ncontent\n")])
    second = applier.apply(path, [RewriteFile("new\ncontent\n")])

    assert first.changed
    assert not second.changed
    assert path.read_text() == "new\ncontent\n"


def test_rewrite_creates_missing_file_in_existing_dir(tmp_path):
    path = tmp_path / "fresh.txt"

    old_umask = os.umask(0o022)
    try:
        result = EditApplier().apply(path, [RewriteFile("hello\n")])
    finally:
        os.umask(old_umask)

    assert path.read_text() == "hello\n"
    assert result.lines_before is None
    assert stat.S_IMODE(path.stat().st_mode) == 0o644

    with pytest.raises(NotFoundError):
        EditApplier().apply(tmp_path / "nope" / "x.txt", [RewriteFile("x")])


def test_move_file(tmp_path):
    src = _write(tmp_path / "a.txt", ["a"])
    dest = tmp_path / "b.txt"

    result = EditApplier().apply(src, [MoveFile(str(dest))])

    assert not src.exists()
    assert dest.read_text() == "a\n"
    assert result.dest_path == str(dest)


def test_move_file_destination_rules(tmp_path):
    src = _write(tmp_path / "a.txt", ["a"])
    dest = _write(tmp_path / "b.txt", ["b"])
    applier = EditApplier()

    with pytest.raises(DestinationExistsError):
        applier.apply(src, [MoveFile(str(dest))])
    assert dest.read_text() == "b\n"

    with pytest.raises(InvalidBatchError):
        applier.apply(src, [MoveFile(str(src))])

    with pytest.raises(NotFoundError):
        applier.apply(src, [MoveFile(str(tmp_path / "missing" / "c.txt"))])

    applier.apply(src, [MoveFile(str(dest), overwrite=True)])
    assert dest.read_text() == "a\n"
    assert not src.exists()


def test_delete_file(tmp_path):
    path = _write(tmp_path / "f.txt", ["a"])

    result = EditApplier().apply(path, [DeleteFile()])

    assert result.deleted
    assert not path.exists()
    with pytest.raises(NotFoundError):
        EditApplier().apply(path, [DeleteFile()])


def test_source_errors(tmp_path):
    with pytest.raises(NotFoundError):
        EditApplier().apply(tmp_path / "missing.txt", [Delete(Anchor(1, "ab"))])
    with pytest.raises(NotAFileError):
        EditApplier().apply(tmp_path, [Delete(Anchor(1, "ab"))])
