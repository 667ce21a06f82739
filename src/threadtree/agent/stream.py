"""Decoding of the agent CLI's ``stream-json`` output."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class LineBuffer:
    """Incremental newline splitter for an unbounded byte stream.

    Complete lines are released as soon as their delimiter arrives; the
    trailing fragment is held until the next chunk (or ``flush`` at EOF).
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[bytes]:
        data = self._pending + chunk
        *lines, self._pending = data.split(b"\n")
        return lines

    def flush(self) -> bytes:
        remainder, self._pending = self._pending, b""
        return remainder

    @property
    def pending(self) -> bytes:
        return self._pending


class _EventModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_id: str | None = None

    @field_validator("session_id", mode="before")
    @classmethod
    def _coerce_session_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class ContentBlock(BaseModel):
    """One entry in an assistant/user message ``content`` list."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    thinking: str | None = None
    name: str | None = None
    id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str | None = None
    content: Any = None
    is_error: bool = False

    @field_validator("input", mode="before")
    @classmethod
    def _default_input(cls, value: Any) -> Any:
        return {} if value is None else value


class MessageBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: Union[str, list[ContentBlock]] = Field(default_factory=list)

    def blocks(self) -> list[ContentBlock]:
        if isinstance(self.content, str):
            return [ContentBlock(type="text", text=self.content)]
        return list(self.content)


class SystemEvent(_EventModel):
    type: Literal["system"]
    subtype: str | None = None
    model: str | None = None
    cwd: str | None = None


class AssistantEvent(_EventModel):
    type: Literal["assistant"]
    message: MessageBody = Field(default_factory=MessageBody)

    def texts(self) -> list[str]:
        return [block.text for block in self.message.blocks() if block.type == "text" and block.text]


class ToolResultEvent(_EventModel):
    """Tool output, either a bare ``tool_result`` event or a CLI ``user`` echo."""

    type: Literal["tool_result", "user"]
    message: MessageBody | None = None
    tool_use_id: str | None = None
    content: Any = None
    is_error: bool = False

    def results(self) -> list[dict[str, Any]]:
        if self.type == "tool_result":
            return [
                {
                    "tool_use_id": self.tool_use_id,
                    "content": self.content,
                    "is_error": self.is_error,
                }
            ]
        if self.message is None:
            return []
        return [
            {
                "tool_use_id": block.tool_use_id,
                "content": block.content,
                "is_error": block.is_error,
            }
            for block in self.message.blocks()
            if block.type == "tool_result"
        ]


class ResultEvent(_EventModel):
    type: Literal["result"]
    subtype: str = "success"
    result: str | None = None
    is_error: bool = False
    num_turns: int | None = None
    total_cost_usd: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.subtype == "success" and not self.is_error


StreamEvent = Union[SystemEvent, AssistantEvent, ToolResultEvent, ResultEvent]

_EVENT_MODELS: dict[str, type[_EventModel]] = {
    "system": SystemEvent,
    "assistant": AssistantEvent,
    "tool_result": ToolResultEvent,
    "user": ToolResultEvent,
    "result": ResultEvent,
}


def parse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Validate a decoded JSON object; unknown event types yield ``None``."""

    event_type = payload.get("type")
    if not isinstance(event_type, str):
        logger.warning("Skipping stream event without a type", extra={"event_type": repr(event_type)})
        return None
    model = _EVENT_MODELS.get(event_type)
    if model is None:
        logger.debug("Ignoring unknown stream event", extra={"event_type": event_type})
        return None
    return model.model_validate(payload)  # type: ignore[return-value]


def decode_line(line: bytes | str) -> StreamEvent | None:
    """Decode one ``stream-json`` line; malformed or blank lines yield ``None``."""

    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping malformed stream line", extra={"error": str(exc), "line": text[:200]})
        return None
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object stream line", extra={"line": text[:200]})
        return None
    try:
        return parse_event(payload)
    except ValidationError as exc:
        logger.warning(
            "Skipping invalid stream event",
            extra={"event_type": payload.get("type"), "error": str(exc)},
        )
        return None


__all__ = [
    "AssistantEvent",
    "ContentBlock",
    "LineBuffer",
    "MessageBody",
    "ResultEvent",
    "StreamEvent",
    "SystemEvent",
    "ToolResultEvent",
    "decode_line",
    "parse_event",
]
