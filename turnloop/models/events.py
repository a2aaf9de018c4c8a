"""
Event types.

Raw events are the backend-neutral low-level protocol every adapter emits:
message started, block started / delta / stopped, message delta, message
stopped. The translator turns them into StreamEvents, which are what the
agent loop forwards to its caller.
"""
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from turnloop.messages import ContentBlock, Message, Role, StopReason


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")


# ── Raw events (adapter → translator) ────────────────────────────────────────

class RawMessageStart(_Event):
    type: Literal["message_start"] = "message_start"
    role: Role = Role.ASSISTANT


class RawBlockStart(_Event):
    type: Literal["block_start"] = "block_start"
    index: int
    kind: Literal["text", "tool_use", "reasoning"]
    id: Optional[str] = None
    name: Optional[str] = None


class RawBlockDelta(_Event):
    """One increment of an open block. Exactly one payload field is expected."""

    type: Literal["block_delta"] = "block_delta"
    index: int
    text: Optional[str] = None
    partial_json: Optional[str] = None
    reasoning: Optional[str] = None
    signature: Optional[str] = None
    redacted: Optional[bytes] = None


class RawBlockStop(_Event):
    type: Literal["block_stop"] = "block_stop"
    index: int


class RawMessageDelta(_Event):
    type: Literal["message_delta"] = "message_delta"
    stop_reason: Optional[StopReason] = None


class RawMessageStop(_Event):
    type: Literal["message_stop"] = "message_stop"


RawEvent = Union[
    RawMessageStart,
    RawBlockStart,
    RawBlockDelta,
    RawBlockStop,
    RawMessageDelta,
    RawMessageStop,
]


# ── Stream events (translator → agent loop → caller) ─────────────────────────

class MessageStartEvent(_Event):
    type: Literal["message_start"] = "message_start"
    role: Role


class TextStartEvent(_Event):
    type: Literal["text_start"] = "text_start"
    index: int


class TextDeltaEvent(_Event):
    type: Literal["text_delta"] = "text_delta"
    index: int
    delta: str


class ToolUseStartEvent(_Event):
    type: Literal["tool_use_start"] = "tool_use_start"
    index: int
    id: str
    name: str


class ToolInputDeltaEvent(_Event):
    type: Literal["tool_input_delta"] = "tool_input_delta"
    index: int
    delta: str


class ReasoningStartEvent(_Event):
    type: Literal["reasoning_start"] = "reasoning_start"
    index: int


class ReasoningDeltaEvent(_Event):
    type: Literal["reasoning_delta"] = "reasoning_delta"
    index: int
    text: Optional[str] = None
    signature: Optional[str] = None
    redacted: Optional[bytes] = None


class ContentBlockCompleteEvent(_Event):
    type: Literal["content_block_complete"] = "content_block_complete"
    index: int
    block: ContentBlock


class MessageCompleteEvent(_Event):
    """Always the last event of a message; carries the assembled message."""

    type: Literal["message_complete"] = "message_complete"
    message: Message
    stop_reason: StopReason


StreamEvent = Annotated[
    Union[
        MessageStartEvent,
        TextStartEvent,
        TextDeltaEvent,
        ToolUseStartEvent,
        ToolInputDeltaEvent,
        ReasoningStartEvent,
        ReasoningDeltaEvent,
        ContentBlockCompleteEvent,
        MessageCompleteEvent,
    ],
    Field(discriminator="type"),
]
