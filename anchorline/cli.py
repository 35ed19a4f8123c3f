"""
Anchorline CLI - hash-anchored file edits and session history.

Commands:
    init      - Write anchorline.yml and create the session database
    read      - Print a file as hash-anchored lines
    check     - Validate anchors against the live file
    edit      - Apply an edit batch (JSON) to a file
    session   - Create, inspect and branch conversation sessions
    serve     - Run the read-only history API
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv

# Load .env file from current directory
load_dotenv()

from . import __version__
from .config import AnchorlineConfig, ConfigError, ensure_anchorline_dir, get_repo_root
from .editing import AnchorValidator, EditApplier, FileView, parse_edit_request
from .editing.hashline import Anchor
from .errors import AnchorlineError
from .log import setup_logging
from .sessions import SessionStore
from .sessions.parts import text_of
from .store import Store

SAMPLE_CONFIG = """\
# Anchorline Configuration

# Hashline reads
read:
  max_limit: 20000      # Lines per read are clamped to this
  default_limit: null   # null = read to end of file

# Edit requests
edit:
  allow_overwrite: false  # Default for move_file when a request omits "overwrite"

# Session history database
store:
  db_path: null         # Default: .anchorline/anchorline.db (ANCHORLINE_DB overrides)

logging:
  level: INFO
  file: null            # Default for `serve`: ~/.anchorline/anchorline.log

# Tool executor sandbox
tools:
  blocked_patterns: [".env", "id_rsa", "credentials", ".secret"]
"""


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """Anchorline - Hash-anchored file editing and branching session history."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _load_config(ctx: click.Context) -> AnchorlineConfig:
    try:
        config = AnchorlineConfig.load(get_repo_root())
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    verbose = bool((ctx.obj or {}).get("verbose"))
    log_file = config.resolved_log_file if config.logging.file else None
    setup_logging(config.logging.level, log_file, console_level="DEBUG" if verbose else "WARNING")
    return config


def _fail(exc: AnchorlineError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps({"error": exc.to_dict()}, indent=2))
    else:
        click.echo(f"Error ({exc.kind}): {exc}", err=True)
    sys.exit(1)


def _open_sessions(config: AnchorlineConfig) -> SessionStore:
    return SessionStore(Store(config.resolved_db_path))


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx: click.Context, force: bool):
    """Initialize anchorline in the current repository."""
    repo_root = get_repo_root()
    click.echo(f"Initializing anchorline in: {repo_root}")

    anchorline_dir = ensure_anchorline_dir(repo_root)
    click.echo(f"  Created: {anchorline_dir}")

    config_path = repo_root / "anchorline.yml"
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    config = _load_config(ctx)
    with Store(config.resolved_db_path) as store:
        click.echo(f"  Database: {store.db_path} (schema v{store.schema_version()})")

    gitignore_path = repo_root / ".gitignore"
    gitignore_entry = "\n# Anchorline\n.anchorline/\n"
    if gitignore_path.exists():
        content = gitignore_path.read_text()
        if ".anchorline" not in content:
            with open(gitignore_path, "a") as f:
                f.write(gitignore_entry)
            click.echo(f"  Updated: {gitignore_path}")
    else:
        gitignore_path.write_text(gitignore_entry)
        click.echo(f"  Created: {gitignore_path}")


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--offset", default=0, type=int, help="0-based first line")
@click.option("--limit", default=None, type=int, help="Maximum number of lines")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def read(ctx: click.Context, path: Path, offset: int, limit: int | None, as_json: bool):
    """Print PATH as '<line>:<hash>|<content>' records."""
    config = _load_config(ctx)
    view = FileView(max_limit=config.read.max_limit)
    if limit is None:
        limit = config.read.default_limit
    try:
        lines = view.read(path, offset=offset, limit=limit)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    if as_json:
        payload = [{"line": line.index, "hash": line.hash, "content": line.content} for line in lines]
        click.echo(json.dumps(payload, indent=2))
        return
    for line in lines:
        click.echo(line.hashline())


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.argument("anchors", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx: click.Context, path: Path, anchors: tuple[str, ...], as_json: bool):
    """Check ANCHORS ('line:hash') against the current content of PATH.

    Exits with status 1 if any anchor is stale.
    """
    _load_config(ctx)
    try:
        parsed = [Anchor.parse(raw) for raw in anchors]
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="ANCHORS") from exc
    try:
        results = AnchorValidator().check(path, parsed)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for r in results:
            if r.valid:
                click.echo(f"  ok     {r.anchor}")
            else:
                live = f" (live hash {r.actual_hash})" if r.actual_hash else ""
                click.echo(f"  stale  {r.anchor}: {r.reason}{live}")
    if not all(r.valid for r in results):
        sys.exit(1)


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--ops", "ops_file", type=click.File("r"), default="-", help="JSON edit request (default: stdin)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def edit(ctx: click.Context, path: Path, ops_file: Any, as_json: bool):
    """Apply an edit batch to PATH.

    The request is a JSON list of operations, for example:

        [{"kind": "replace", "anchor": "3:ab12", "new_content": "x = 1"}]

    Nothing is written if any anchor is stale.
    """
    config = _load_config(ctx)
    try:
        batch = parse_edit_request(ops_file.read(), default_overwrite=config.edit.allow_overwrite)
        result = EditApplier().apply(path, batch)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    if result.deleted:
        click.echo(f"Deleted {result.path}")
    elif result.dest_path:
        click.echo(f"Moved {result.path} -> {result.dest_path}")
    elif result.changed:
        click.echo(
            f"Applied {result.operations_applied} operation(s) to {result.path} "
            f"({result.lines_before} -> {result.lines_after} lines)"
        )
    else:
        click.echo(f"No change to {result.path}")


# =============================================================================
# Sessions
# =============================================================================


@main.group(name="session")
def session_group() -> None:
    """Conversation session history."""


def _turn_summary(turn: Any, width: int = 60) -> str:
    text = text_of(turn.user_parts) or "(empty)"
    if len(text) > width:
        text = text[: width - 1] + "…"
    return text


@session_group.command("new")
@click.option("--title", default=None, help="Session title")
@click.pass_context
def session_new(ctx: click.Context, title: str | None) -> None:
    """Create a session in the current project."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        project = sessions.create_project(config.root or get_repo_root())
        session = sessions.create_session(project.id, title=title)
    finally:
        sessions.store.close()
    click.echo(session.id)


@session_group.command("list")
@click.option("--limit", default=50, show_default=True, type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def session_list(ctx: click.Context, limit: int, as_json: bool) -> None:
    """List sessions of the current project, most recent first."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        project = sessions.project_by_root_dir(config.root or get_repo_root())
        items = sessions.list_sessions(project.id, limit=limit) if project else []
    finally:
        sessions.store.close()

    if as_json:
        click.echo(json.dumps([vars(s) for s in items], indent=2))
        return
    if not items:
        click.echo("No sessions.")
        return
    for s in items:
        click.echo(f"{s.id}  {s.title or '(untitled)'}")


@session_group.command("show")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def session_show(ctx: click.Context, session_id: str, as_json: bool) -> None:
    """Show a session and its turn tree."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        session = sessions.require_session(session_id)
        turns = sessions.list_turns(session_id)
        graph = sessions.graph(session_id)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return
    finally:
        sessions.store.close()

    if as_json:
        click.echo(json.dumps({"session": vars(session), "turns": [t.to_dict() for t in turns]}, indent=2))
        return

    by_id = {t.id: t for t in turns}
    click.echo(f"Session: {session.id}")
    click.echo(f"  Title: {session.title or '(untitled)'}")
    click.echo(f"  Turns: {len(turns)}")

    def walk(turn_id: str, depth: int) -> None:
        marker = "*" if turn_id == session.current_turn_id else " "
        label = "root" if turn_id == session.root_turn_id else _turn_summary(by_id[turn_id])
        click.echo(f"  {marker} {'  ' * depth}{turn_id}  {label}")
        for child in graph.children(turn_id):
            walk(child, depth + 1)

    for root_id in graph.roots():
        walk(root_id, 0)


@session_group.command("append")
@click.argument("session_id")
@click.argument("user_text")
@click.option("--assistant", "assistant_text", default=None, help="Assistant reply text")
@click.option("--parent", "parent_turn_id", default=None, help="Branch from this turn instead of the current one")
@click.pass_context
def session_append(
    ctx: click.Context,
    session_id: str,
    user_text: str,
    assistant_text: str | None,
    parent_turn_id: str | None,
) -> None:
    """Append a turn to SESSION_ID and make it current."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        turn = sessions.append_turn(
            session_id,
            user_text,
            assistant_text,
            parent_turn_id=parent_turn_id,
        )
    except AnchorlineError as exc:
        _fail(exc, False)
        return
    finally:
        sessions.store.close()
    click.echo(turn.id)


@session_group.command("switch")
@click.argument("session_id")
@click.argument("turn_id")
@click.pass_context
def session_switch(ctx: click.Context, session_id: str, turn_id: str) -> None:
    """Make TURN_ID the current turn of SESSION_ID."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        session = sessions.switch_branch(session_id, turn_id)
    except AnchorlineError as exc:
        _fail(exc, False)
        return
    finally:
        sessions.store.close()
    click.echo(f"Current turn: {session.current_turn_id}")


@session_group.command("log")
@click.argument("session_id")
@click.option("--after", "after_seq", default=None, type=int, help="Only entries after this seq")
@click.option("--limit", default=100, show_default=True, type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def session_log(ctx: click.Context, session_id: str, after_seq: int | None, limit: int, as_json: bool) -> None:
    """Show the operation log of SESSION_ID."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        sessions.require_session(session_id)
        ops = sessions.list_ops(session_id, after_seq=after_seq, limit=limit)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return
    finally:
        sessions.store.close()

    if as_json:
        click.echo(json.dumps([op.to_dict() for op in ops], indent=2))
        return
    for op in ops:
        click.echo(f"{op.seq:>6}  {op.op_type:<18} {getattr(op.payload, 'turn_id', '')}")


@session_group.command("path")
@click.argument("session_id")
@click.option("--turn", "turn_id", default=None, help="End turn (default: current)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def session_path(ctx: click.Context, session_id: str, turn_id: str | None, as_json: bool) -> None:
    """Show the turns from the root to the current (or given) turn."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        turns = sessions.turn_path(session_id, turn_id)
    except AnchorlineError as exc:
        _fail(exc, as_json)
        return
    finally:
        sessions.store.close()

    if as_json:
        click.echo(json.dumps([t.to_dict() for t in turns], indent=2))
        return
    for t in turns:
        click.echo(f"{t.id}  {_turn_summary(t)}")


@session_group.command("rebuild")
@click.argument("session_id")
@click.pass_context
def session_rebuild(ctx: click.Context, session_id: str) -> None:
    """Rebuild the turn graph of SESSION_ID from its operation log."""
    config = _load_config(ctx)
    sessions = _open_sessions(config)
    try:
        session = sessions.require_session(session_id)
        graph = sessions.rebuild_graph(session_id)
    except AnchorlineError as exc:
        _fail(exc, False)
        return
    finally:
        sessions.store.close()

    click.echo(f"Replayed {session_id}: {len(graph)} turn(s), current {graph.current_turn_id}")
    if graph.current_turn_id != session.current_turn_id:
        click.echo(f"  Warning: stored current turn is {session.current_turn_id}", err=True)
        sys.exit(1)


@main.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8421, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the read-only session history API."""
    from .web.server import run_server

    click.echo(f"Serving anchorline history on http://{host}:{port}")
    run_server(host=host, port=port, root=get_repo_root())


if __name__ == "__main__":
    main()
