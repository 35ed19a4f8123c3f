from __future__ import annotations

import pytest

from anchorline.editing import FileView, line_hash
from anchorline.errors import FileIOError, NotAFileError, NotFoundError


def _write(path, lines):
    path.write_text("\n".join(lines) + "\n")
    return path


def test_read_returns_numbered_hashed_lines(tmp_path):
    path = _write(tmp_path / "f.txt", ["a", "b", "c"])

    lines = FileView().read(path)

    assert [(l.index, l.content) for l in lines] == [(1, "a"), (2, "b"), (3, "c")]
    assert [l.hash for l in lines] == [line_hash("a"), line_hash("b"), line_hash("c")]


def test_read_window_and_render(tmp_path):
    path = _write(tmp_path / "f.txt", [f"line {i}" for i in range(1, 11)])
    view = FileView()

    window = view.read(path, offset=3, limit=2)
    assert [l.index for l in window] == [4, 5]
    assert view.render(path, offset=3, limit=2) == (
        f"4:{line_hash('line 4')}|line 4\n5:{line_hash('line 5')}|line 5"
    )
    assert view.read(path, offset=20) == []
    assert view.total_lines(path) == 10


def test_limit_is_clamped_to_ceiling(tmp_path):
    path = _write(tmp_path / "f.txt", [str(i) for i in range(10)])
    view = FileView(max_limit=3)

    assert len(view.read(path, limit=100)) == 3
    assert len(view.read(path)) == 3


def test_negative_offset_or_limit_rejected(tmp_path):
    path = _write(tmp_path / "f.txt", ["a"])
    view = FileView()

    with pytest.raises(ValueError):
        view.read(path, offset=-1)
    with pytest.raises(ValueError):
        view.read(path, limit=-5)


def test_read_errors(tmp_path):
    view = FileView()
    with pytest.raises(NotFoundError):
        view.read(tmp_path / "missing.txt")
    with pytest.raises(NotAFileError):
        view.read(tmp_path)

    binary = tmp_path / "blob.bin"
    binary.write_bytes(b"\xff\xfe\x00bad")
    with pytest.raises(FileIOError):
        view.read(binary)


def test_empty_file_has_no_lines(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("")
    assert FileView().read(path) == []


def test_iter_lines_rereads_file(tmp_path):
    path = _write(tmp_path / "f.txt", ["a"])
    view = FileView()

    assert [l.content for l in view.iter_lines(path)] == ["a"]
    _write(path, ["z", "y"])
    assert [l.content for l in view.iter_lines(path)] == ["z", "y"]


def test_crlf_lines_have_no_carriage_return(tmp_path):
    path = tmp_path / "win.txt"
    path.write_bytes(b"one\r\ntwo\r\n")

    lines = FileView().read(path)

    assert [l.content for l in lines] == ["one", "two"]
    assert lines[0].hash == line_hash("one")
