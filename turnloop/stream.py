"""
Stream translator.

Rebuilds complete content blocks from an adapter's raw event sequence and
emits the normalized StreamEvents along the way. One translator serves one
generation call; its buffers are never shared.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from turnloop.messages import Message, ReasoningBlock, Role, StopReason, TextBlock, ToolUseBlock
from turnloop.models.events import (
    ContentBlockCompleteEvent,
    MessageCompleteEvent,
    MessageStartEvent,
    RawBlockDelta,
    RawBlockStart,
    RawBlockStop,
    RawEvent,
    RawMessageDelta,
    RawMessageStart,
    RawMessageStop,
    ReasoningDeltaEvent,
    ReasoningStartEvent,
    StreamEvent,
    TextDeltaEvent,
    TextStartEvent,
    ToolInputDeltaEvent,
    ToolUseStartEvent,
)

logger = logging.getLogger(__name__)


def parse_tool_input(raw: str) -> Any:
    """Parse accumulated tool input JSON. Empty or malformed input yields `{}`."""
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Malformed tool input JSON, using empty input: {e}")
        return {}


class _BlockBuffer:
    """Accumulation state of one open block."""

    def __init__(self, kind: str, tool_id: str = "", tool_name: str = ""):
        self.kind = kind
        self.tool_id = tool_id
        self.tool_name = tool_name
        self.parts: list[str] = []
        self.signature: list[str] = []
        self.redacted = bytearray()

    def finish(self):
        if self.kind == "tool_use":
            return ToolUseBlock(
                id=self.tool_id,
                name=self.tool_name,
                input=parse_tool_input("".join(self.parts)),
            )
        if self.kind == "reasoning":
            return ReasoningBlock(
                text="".join(self.parts),
                signature="".join(self.signature),
                redacted=bytes(self.redacted),
            )
        return TextBlock(text="".join(self.parts))


class StreamTranslator:
    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._role = Role.ASSISTANT
        self._stop_reason = StopReason.END_TURN
        self._open: dict[int, _BlockBuffer] = {}
        self._seen: list[int] = []
        self._finished: dict[int, Any] = {}

    def feed(self, event: RawEvent) -> list[StreamEvent]:
        """Consume one raw event and return the stream events it produces."""
        if isinstance(event, RawMessageStart):
            self._reset()
            self._role = event.role
            return [MessageStartEvent(role=event.role)]

        if isinstance(event, RawBlockStart):
            return self._start_block(event)

        if isinstance(event, RawBlockDelta):
            return self._apply_delta(event)

        if isinstance(event, RawBlockStop):
            return self._stop_block(event.index)

        if isinstance(event, RawMessageDelta):
            if event.stop_reason is not None:
                self._stop_reason = event.stop_reason
            return []

        if isinstance(event, RawMessageStop):
            return [self._complete_message()]

        logger.debug(f"Ignoring unknown raw event {type(event).__name__}")
        return []

    # ── Block lifecycle ──────────────────────────────────────────────────────

    def _start_block(self, event: RawBlockStart) -> list[StreamEvent]:
        if event.index in self._seen:
            logger.warning(f"Block index {event.index} started twice, ignoring")
            return []
        self._seen.append(event.index)

        if event.kind == "tool_use":
            tool_id = event.id or ""
            name = event.name or ""
            self._open[event.index] = _BlockBuffer("tool_use", tool_id, name)
            return [ToolUseStartEvent(index=event.index, id=tool_id, name=name)]

        if event.kind == "reasoning":
            self._open[event.index] = _BlockBuffer("reasoning")
            return [ReasoningStartEvent(index=event.index)]

        self._open[event.index] = _BlockBuffer("text")
        return [TextStartEvent(index=event.index)]

    def _apply_delta(self, event: RawBlockDelta) -> list[StreamEvent]:
        buffer = self._open.get(event.index)
        if buffer is None:
            logger.debug(f"Delta for block {event.index} that is not open, ignoring")
            return []

        if buffer.kind == "text" and event.text is not None:
            buffer.parts.append(event.text)
            return [TextDeltaEvent(index=event.index, delta=event.text)]

        if buffer.kind == "tool_use" and event.partial_json is not None:
            buffer.parts.append(event.partial_json)
            return [ToolInputDeltaEvent(index=event.index, delta=event.partial_json)]

        if buffer.kind == "reasoning" and (
            event.reasoning is not None or event.signature is not None or event.redacted is not None
        ):
            if event.reasoning is not None:
                buffer.parts.append(event.reasoning)
            if event.signature is not None:
                buffer.signature.append(event.signature)
            if event.redacted is not None:
                buffer.redacted.extend(event.redacted)
            return [
                ReasoningDeltaEvent(
                    index=event.index,
                    text=event.reasoning,
                    signature=event.signature,
                    redacted=event.redacted,
                )
            ]

        logger.debug(f"Delta does not match {buffer.kind} block {event.index}, ignoring")
        return []

    def _stop_block(self, index: int) -> list[StreamEvent]:
        buffer = self._open.pop(index, None)
        if buffer is None:
            logger.debug(f"Stop for block {index} that is not open, ignoring")
            return []
        block = buffer.finish()
        self._finished[index] = block
        return [ContentBlockCompleteEvent(index=index, block=block)]

    def _complete_message(self) -> MessageCompleteEvent:
        if self._open:
            logger.warning(f"Message stopped with unfinished blocks {sorted(self._open)}, dropping them")
        content = [self._finished[i] for i in self._seen if i in self._finished]
        event = MessageCompleteEvent(
            message=Message(role=self._role, content=content),
            stop_reason=self._stop_reason,
        )
        self._reset()
        return event

