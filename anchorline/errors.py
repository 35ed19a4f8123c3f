"""
Error taxonomy shared by the edit engine and the session store.

Every error carries a stable ``kind`` string so the tool layer can hand a
structured result back to the model instead of a traceback.
"""

from __future__ import annotations

from typing import Any


class AnchorlineError(RuntimeError):
    """Base class for all anchorline failures."""

    kind = "error"
    recoverable = False

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self), "recoverable": self.recoverable}


class NotFoundError(AnchorlineError):
    kind = "not_found"


class NotAFileError(AnchorlineError):
    kind = "not_a_file"


class FileIOError(AnchorlineError):
    """Read or write failure on the underlying file."""

    kind = "io_error"


class StaleAnchorError(AnchorlineError):
    """An anchor no longer matches live content. Re-read and retry."""

    kind = "stale_anchor"
    recoverable = True

    def __init__(self, operation_index: int, anchor: Any, reason: str, actual_hash: str | None = None):
        self.operation_index = operation_index
        self.anchor = anchor
        self.reason = reason
        self.actual_hash = actual_hash
        detail = f"operation {operation_index}: anchor {anchor} is stale ({reason})"
        if actual_hash:
            detail += f", live hash is {actual_hash}"
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "operation_index": self.operation_index,
                "anchor": str(self.anchor),
                "reason": self.reason,
                "actual_hash": self.actual_hash,
            }
        )
        return payload


class InvalidBatchError(AnchorlineError):
    kind = "invalid_batch"
    recoverable = True

    def __init__(self, message: str, operation_index: int | None = None):
        self.operation_index = operation_index
        if operation_index is not None:
            message = f"operation {operation_index}: {message}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["operation_index"] = self.operation_index
        return payload


class DestinationExistsError(AnchorlineError):
    kind = "destination_exists"
    recoverable = True


class MalformedPayloadError(AnchorlineError):
    """Persisted structured content failed validation on read."""

    kind = "malformed_payload"


class DanglingReferenceError(AnchorlineError):
    """A turn reference does not resolve inside its session."""

    kind = "dangling_reference"


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"project not found: {project_id}")


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session not found: {session_id}")


class TurnNotFoundError(NotFoundError):
    def __init__(self, turn_id: str):
        self.turn_id = turn_id
        super().__init__(f"turn not found: {turn_id}")
