"""
FastAPI transport layer for anchorline session history (read-only).
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from loguru import logger

from ..errors import DanglingReferenceError, MalformedPayloadError, NotFoundError
from ..sessions import SessionStore


def _project_to_dict(project: Any) -> dict[str, Any]:
    return asdict(project)


def _session_to_dict(session: Any) -> dict[str, Any]:
    return asdict(session)


def create_app(sessions: SessionStore) -> FastAPI:
    app = FastAPI(title="anchorline-history", version="0.1.0")

    def _guard(exc: Exception) -> HTTPException:
        if isinstance(exc, NotFoundError):
            return HTTPException(status_code=404, detail=str(exc))
        logger.error("api history read failed: {}", exc)
        return HTTPException(status_code=500, detail=str(exc))

    @app.get("/api/projects")
    async def list_projects() -> dict[str, Any]:
        return {"items": [_project_to_dict(p) for p in sessions.list_projects()]}

    @app.get("/api/projects/{project_id}/sessions")
    async def list_sessions(project_id: str, limit: int = Query(default=50, ge=1, le=500)) -> dict[str, Any]:
        project = sessions.get_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="project not found")
        items = sessions.list_sessions(project_id, limit=limit)
        return {"project": _project_to_dict(project), "items": [_session_to_dict(s) for s in items]}

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str) -> dict[str, Any]:
        session = sessions.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="session not found")
        try:
            turns = sessions.list_turns(session_id)
        except MalformedPayloadError as exc:
            raise _guard(exc) from exc
        return {"session": _session_to_dict(session), "turns": [t.to_dict() for t in turns]}

    @app.get("/api/sessions/{session_id}/path")
    async def get_path(session_id: str, turn_id: Optional[str] = Query(default=None)) -> dict[str, Any]:
        try:
            path = sessions.turn_path(session_id, turn_id)
        except (NotFoundError, MalformedPayloadError, DanglingReferenceError) as exc:
            if isinstance(exc, DanglingReferenceError) and turn_id is not None:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            raise _guard(exc) from exc
        return {"session_id": session_id, "turns": [t.to_dict() for t in path]}

    @app.get("/api/sessions/{session_id}/ops")
    async def list_ops(
        session_id: str,
        after_seq: Optional[int] = Query(default=None, ge=0),
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> dict[str, Any]:
        if sessions.get_session(session_id) is None:
            raise HTTPException(status_code=404, detail="session not found")
        try:
            ops = sessions.list_ops(session_id, after_seq=after_seq, limit=limit)
        except MalformedPayloadError as exc:
            raise _guard(exc) from exc
        return {"items": [op.to_dict() for op in ops]}

    @app.get("/api/turns/{turn_id}")
    async def get_turn(turn_id: str) -> dict[str, Any]:
        try:
            turn = sessions.require_turn(turn_id)
        except (NotFoundError, MalformedPayloadError) as exc:
            raise _guard(exc) from exc
        children = sessions.children(turn.session_id, turn.id)
        return {"turn": turn.to_dict(), "children": [child.id for child in children]}

    return app
