from __future__ import annotations

from anchorline.editing import Anchor, AnchorValidator, FileView, line_hash
from anchorline.editing.anchors import HASH_MISMATCH, INDEX_OUT_OF_RANGE


def test_anchors_from_fresh_read_are_valid(tmp_path):
    path = tmp_path / "f.py"
    path.write_text("import os\n\nprint(os.getcwd())\n")
    anchors = [line.anchor() for line in FileView().read(path)]

    results = AnchorValidator().check(path, anchors)

    assert all(r.valid for r in results)
    assert AnchorValidator().all_valid(path, anchors)


def test_changed_line_reports_hash_mismatch_with_live_hash(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("a\nb\nc\n")
    anchors = [line.anchor() for line in FileView().read(path)]
    path.write_text("a\nx\nc\n")

    results = AnchorValidator().check(path, anchors)

    assert [r.valid for r in results] == [True, False, True]
    stale = results[1]
    assert stale.stale
    assert stale.reason == HASH_MISMATCH
    assert stale.actual_hash == line_hash("x")
    assert stale.actual_content == "x"
    assert stale.to_dict()["status"] == "stale"


def test_out_of_range_anchor(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("a\n")

    [result] = AnchorValidator().check(path, [Anchor(5, line_hash("a"))])

    assert result.reason == INDEX_OUT_OF_RANGE
    assert result.actual_hash is None


def test_short_hash_prefix_is_accepted(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("hello\n")

    [result] = AnchorValidator().check(path, [Anchor(1, line_hash("hello")[:2])])

    assert result.valid


def test_check_does_not_touch_file(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("a\nb\n")
    before = path.stat().st_mtime_ns

    AnchorValidator().check(path, [Anchor(1, "ffff"), Anchor(9, "abcd")])

    assert path.read_text() == "a\nb\n"
    assert path.stat().st_mtime_ns == before
