"""
Typed conversation payloads stored on turns.

Parts and messages are pydantic models with a ``type``/``role``
discriminator. They are serialized to JSON only at the persistence edge;
anything read back that does not validate is a MalformedPayloadError.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..errors import MalformedPayloadError

SESSION_TITLE_MAX_CHARS = 80


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    url: str


class ToolCallPart(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: str = "{}"


class ToolResultPart(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    content: str


UserPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]
AssistantPart = Annotated[Union[TextPart, ToolCallPart], Field(discriminator="type")]


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    parts: list[TextPart] = Field(default_factory=list)


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    parts: list[UserPart] = Field(default_factory=list)


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    parts: list[AssistantPart] = Field(default_factory=list)


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    parts: list[ToolResultPart] = Field(default_factory=list)


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]


class ConversationState(BaseModel):
    """Snapshot of the agent conversation after a turn completed."""

    messages: list[Message] = Field(default_factory=list)


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: Optional[int] = None
    cached_tokens: Optional[int] = None


USER_PARTS: TypeAdapter[list[Any]] = TypeAdapter(list[UserPart])
ASSISTANT_PARTS: TypeAdapter[list[Any]] = TypeAdapter(list[AssistantPart])
CONVERSATION_STATE: TypeAdapter[ConversationState] = TypeAdapter(ConversationState)
USAGE: TypeAdapter[Usage] = TypeAdapter(Usage)


def encode(adapter: TypeAdapter[Any], value: Any) -> str:
    return adapter.dump_json(value, exclude_none=True).decode("utf-8")


def decode(adapter: TypeAdapter[Any], raw: str | bytes, what: str) -> Any:
    try:
        return adapter.validate_json(raw)
    except ValidationError as exc:
        raise MalformedPayloadError(f"{what} failed validation: {exc.errors()[0]['msg']}") from exc


def coerce(adapter: TypeAdapter[Any], value: Any, what: str) -> Any:
    """Validate caller-supplied python values (dicts or models)."""
    try:
        return adapter.validate_python(value)
    except ValidationError as exc:
        raise MalformedPayloadError(f"{what} failed validation: {exc.errors()[0]['msg']}") from exc


def text_of(parts: list[Any]) -> str:
    return " ".join(part.text.strip() for part in parts if isinstance(part, TextPart) and part.text.strip())


def derive_session_title(user_parts: list[Any]) -> str | None:
    normalized = " ".join(text_of(user_parts).split())
    if not normalized:
        return None
    if len(normalized) <= SESSION_TITLE_MAX_CHARS:
        return normalized
    return normalized[:SESSION_TITLE_MAX_CHARS] + "…"
