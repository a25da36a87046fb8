"""
Stream events emitted by the vault assistant's tool-calling loop.

Only `tool_end.tool_call.pending_change` matters to the staging engine; the
rest is carried through for the presentation layer. `pending_change` stays a
raw dict here on purpose: it is validated when it is staged, so one bad
proposal cannot break parsing of the whole stream.
"""

import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ToolCallDisplay(BaseModel):
    """Tool call info for display in chat."""

    id: str
    name: str
    args: Dict[str, Any] = {}
    result: str = ""
    pending_change: Optional[Dict[str, Any]] = None


class ChatMessage(BaseModel):
    """A step summary message from the assistant (or a user message)."""

    id: str
    role: Literal["user", "assistant"] = "assistant"
    content: str = ""
    timestamp: float = Field(default_factory=time.time)
    pending_change_ids: List[str] = []
    tool_calls: List[ToolCallDisplay] = []
    reasoning: Optional[str] = None


class ThinkingEvent(BaseModel):
    type: Literal["thinking"] = "thinking"


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = {}


class ToolEndEvent(BaseModel):
    type: Literal["tool_end"] = "tool_end"
    tool_call: ToolCallDisplay


class MessageEvent(BaseModel):
    type: Literal["message"] = "message"
    message: ChatMessage


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    response: str = ""
    pending_change_ids: List[str] = []
    reasoning: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[ThinkingEvent, ToolStartEvent, ToolEndEvent, MessageEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)
