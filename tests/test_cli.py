from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from anchorline.cli import main
from anchorline.config import DB_ENV_VAR
from anchorline.editing import FileView


@pytest.fixture
def repo(tmp_path, monkeypatch):
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(DB_ENV_VAR, raising=False)
    return tmp_path


def test_cli_help_lists_commands():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("init", "read", "check", "edit", "session", "serve"):
        assert command in result.output


def test_init_writes_config_and_database(repo):
    result = CliRunner().invoke(main, ["init"])

    assert result.exit_code == 0, result.output
    assert (repo / "anchorline.yml").exists()
    assert (repo / ".anchorline" / "anchorline.db").exists()
    assert ".anchorline/" in (repo / ".gitignore").read_text()


def test_read_prints_hashlines(repo):
    (repo / "f.txt").write_text("a\nb\nc\n")

    result = CliRunner().invoke(main, ["read", "f.txt", "--offset", "1"])

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [line.hashline() for line in FileView().read(repo / "f.txt", offset=1)]


def test_check_exits_nonzero_on_stale_anchor(repo):
    path = repo / "f.txt"
    path.write_text("a\nb\n")
    anchors = [str(line.anchor()) for line in FileView().read(path)]
    runner = CliRunner()

    ok = runner.invoke(main, ["check", "f.txt", *anchors])
    assert ok.exit_code == 0

    path.write_text("a\nchanged\n")
    stale = runner.invoke(main, ["check", "f.txt", *anchors])
    assert stale.exit_code == 1
    assert "stale" in stale.stdout


def test_edit_from_stdin(repo):
    path = repo / "f.txt"
    path.write_text("a\nb\nc\n")
    anchor = str(FileView().read(path)[1].anchor())
    request = json.dumps([{"kind": "replace", "anchor": anchor, "new_content": "B"}])

    result = CliRunner().invoke(main, ["edit", "f.txt"], input=request)

    assert result.exit_code == 0, result.output
    assert path.read_text() == "a\nB\nc\n"
    assert "Applied 1 operation(s)" in result.stdout


def test_edit_stale_batch_reports_error(repo):
    path = repo / "f.txt"
    path.write_text("a\nb\n")
    anchor = str(FileView().read(path)[0].anchor())
    path.write_text("z\nb\n")
    ops_file = repo / "ops.json"
    ops_file.write_text(json.dumps([{"kind": "delete", "anchor": anchor}]))

    result = CliRunner().invoke(main, ["edit", "f.txt", "--ops", str(ops_file), "--json"])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"]["kind"] == "stale_anchor"
    assert path.read_text() == "z\nb\n"


def test_session_workflow(repo):
    runner = CliRunner()

    created = runner.invoke(main, ["session", "new"])
    assert created.exit_code == 0, created.output
    session_id = created.stdout.strip()

    first = runner.invoke(main, ["session", "append", session_id, "hi", "--assistant", "hello"])
    assert first.exit_code == 0, first.output
    first_turn = first.stdout.strip()

    listed = runner.invoke(main, ["session", "list", "--json"])
    [entry] = json.loads(listed.stdout)
    assert entry["id"] == session_id
    assert entry["title"] == "hi"

    shown = json.loads(runner.invoke(main, ["session", "show", session_id, "--json"]).stdout)
    root_turn = shown["session"]["root_turn_id"]

    switched = runner.invoke(main, ["session", "switch", session_id, root_turn])
    assert switched.exit_code == 0
    second = runner.invoke(main, ["session", "append", session_id, "hey"])
    second_turn = second.stdout.strip()

    path = json.loads(runner.invoke(main, ["session", "path", session_id, "--json"]).stdout)
    assert [t["id"] for t in path] == [root_turn, second_turn]

    log = json.loads(runner.invoke(main, ["session", "log", session_id, "--json"]).stdout)
    assert [op["op_type"] for op in log] == [
        "session.created",
        "turn.appended",
        "session.title_set",
        "session.checkout",
        "turn.appended",
    ]

    rebuilt = runner.invoke(main, ["session", "rebuild", session_id])
    assert rebuilt.exit_code == 0
    assert second_turn in rebuilt.stdout

    tree = runner.invoke(main, ["session", "show", session_id])
    assert first_turn in tree.stdout
    assert "* " in tree.stdout


def test_session_switch_to_unknown_turn_fails(repo):
    runner = CliRunner()
    session_id = runner.invoke(main, ["session", "new"]).stdout.strip()

    result = runner.invoke(main, ["session", "switch", session_id, "turn_missing"])

    assert result.exit_code == 1
    assert "dangling_reference" in result.output
