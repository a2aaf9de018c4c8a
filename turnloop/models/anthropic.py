"""
Anthropic (Claude) model adapter.
Uses the official anthropic SDK with streaming tool use and extended thinking.
"""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterator, Optional

import anthropic

from turnloop.errors import ModelProviderError
from turnloop.messages import (
    CachePointBlock,
    DocumentBlock,
    ImageBlock,
    JsonBlock,
    Message,
    ReasoningBlock,
    Role,
    StopReason,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    system_prompt_text,
)
from turnloop.models.base import BaseModelAdapter, StreamParams, ToolPolicy
from turnloop.models.events import (
    RawBlockDelta,
    RawBlockStart,
    RawBlockStop,
    RawEvent,
    RawMessageDelta,
    RawMessageStart,
    RawMessageStop,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": StopReason.END_TURN,
    "max_tokens": StopReason.MAX_TOKENS,
    "stop_sequence": StopReason.STOP_SEQUENCE,
    "tool_use": StopReason.TOOL_USE,
    "pause_turn": StopReason.END_TURN,
    "refusal": StopReason.CONTENT_FILTERED,
    "model_context_window_exceeded": StopReason.CONTEXT_WINDOW_EXCEEDED,
}

# Helper-level events the SDK adds on top of the raw protocol; the raw
# content_block_delta events already carry the same data.
_SDK_CONVENIENCE_EVENTS = {"text", "thinking", "signature", "input_json", "citation"}


class AnthropicAdapter(BaseModelAdapter):
    def __init__(self, model_name: str, api_key: str, base_url: Optional[str] = None):
        self.model_name = model_name
        self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url)

    def build_request(self, messages: list[Message], params: StreamParams) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": params.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": _to_anthropic_messages(messages),
        }
        system = system_prompt_text(params.system_prompt)
        if system:
            kwargs["system"] = system
        if params.tool_specs:
            kwargs["tools"] = [s.to_anthropic_schema() for s in params.tool_specs]
            if params.tool_policy is not None:
                kwargs["tool_choice"] = _to_tool_choice(params.tool_policy)
        if params.temperature is not None:
            kwargs["temperature"] = params.temperature
        if params.top_p is not None:
            kwargs["top_p"] = params.top_p
        if params.stop_sequences:
            kwargs["stop_sequences"] = params.stop_sequences
        return kwargs

    async def stream_raw(
        self,
        messages: list[Message],
        params: StreamParams,
    ) -> AsyncIterator[RawEvent]:
        kwargs = self.build_request(messages, params)

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    for raw in translate_sdk_event(event):
                        yield raw
        except anthropic.AuthenticationError as e:
            raise ModelProviderError("Invalid Anthropic API key", "anthropic") from e
        except anthropic.APIConnectionError as e:
            raise ModelProviderError(f"Connection error: {e}", "anthropic") from e
        except anthropic.APIError as e:
            raise ModelProviderError(str(e), "anthropic") from e


def translate_sdk_event(event: Any) -> list[RawEvent]:
    """Map one anthropic SDK stream event to raw events."""
    event_type = getattr(event, "type", None)

    if event_type == "message_start":
        role = Role.USER if event.message.role == "user" else Role.ASSISTANT
        return [RawMessageStart(role=role)]

    if event_type == "content_block_start":
        block = event.content_block
        index = event.index
        if block.type == "text":
            events: list[RawEvent] = [RawBlockStart(index=index, kind="text")]
            if block.text:
                events.append(RawBlockDelta(index=index, text=block.text))
            return events
        if block.type == "tool_use":
            return [RawBlockStart(index=index, kind="tool_use", id=block.id, name=block.name)]
        if block.type == "thinking":
            events = [RawBlockStart(index=index, kind="reasoning")]
            if block.thinking:
                events.append(RawBlockDelta(index=index, reasoning=block.thinking))
            return events
        if block.type == "redacted_thinking":
            return [
                RawBlockStart(index=index, kind="reasoning"),
                RawBlockDelta(index=index, redacted=block.data.encode("utf-8")),
            ]
        logger.debug(f"Skipping unsupported content block type {block.type!r}")
        return []

    if event_type == "content_block_delta":
        delta = event.delta
        index = event.index
        if delta.type == "text_delta":
            return [RawBlockDelta(index=index, text=delta.text)]
        if delta.type == "input_json_delta":
            return [RawBlockDelta(index=index, partial_json=delta.partial_json)]
        if delta.type == "thinking_delta":
            return [RawBlockDelta(index=index, reasoning=delta.thinking)]
        if delta.type == "signature_delta":
            return [RawBlockDelta(index=index, signature=delta.signature)]
        return []

    if event_type == "content_block_stop":
        return [RawBlockStop(index=event.index)]

    if event_type == "message_delta":
        reason = getattr(event.delta, "stop_reason", None)
        if reason is None:
            return []
        return [RawMessageDelta(stop_reason=_STOP_REASONS.get(reason, StopReason.END_TURN))]

    if event_type == "message_stop":
        return [RawMessageStop()]

    if event_type not in _SDK_CONVENIENCE_EVENTS:
        logger.debug(f"Ignoring stream event {event_type!r}")
    return []


def _to_tool_choice(policy: ToolPolicy) -> dict:
    if policy.mode == "none":
        return {"type": "none"}
    if policy.mode == "required":
        return {"type": "any"}
    if policy.mode == "specific":
        return {"type": "tool", "name": policy.name}
    return {"type": "auto"}


def _to_anthropic_block(block: Any) -> Optional[dict]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}

    if isinstance(block, ToolUseBlock):
        tool_input = block.input if isinstance(block.input, dict) else {}
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": tool_input}

    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": [_to_result_text(item) for item in block.content],
            "is_error": block.is_error,
        }

    if isinstance(block, ReasoningBlock):
        if block.redacted:
            return {"type": "redacted_thinking", "data": block.redacted.decode("utf-8")}
        return {"type": "thinking", "thinking": block.text, "signature": block.signature}

    if isinstance(block, ImageBlock):
        if block.url:
            source = {"type": "url", "url": block.url}
        else:
            source = {
                "type": "base64",
                "media_type": f"image/{block.format}",
                "data": base64.b64encode(block.data or b"").decode("ascii"),
            }
        return {"type": "image", "source": source}

    if isinstance(block, DocumentBlock):
        return _to_anthropic_document(block)

    # Video and guard content have no Anthropic equivalent.
    return None


def _to_anthropic_document(block: DocumentBlock) -> Optional[dict]:
    if block.url:
        source = {"type": "url", "url": block.url}
    elif block.format == "pdf" and block.data is not None:
        source = {
            "type": "base64",
            "media_type": "application/pdf",
            "data": base64.b64encode(block.data).decode("ascii"),
        }
    elif block.text is not None:
        source = {"type": "text", "media_type": "text/plain", "data": block.text}
    elif block.data is not None:
        source = {"type": "text", "media_type": "text/plain", "data": block.data.decode("utf-8", errors="replace")}
    else:
        return None

    document: dict[str, Any] = {"type": "document", "source": source, "title": block.name}
    if block.context:
        document["context"] = block.context
    if block.citations:
        document["citations"] = {"enabled": True}
    return document


def _to_result_text(item: Any) -> dict:
    if isinstance(item, JsonBlock):
        return {"type": "text", "text": json.dumps(item.value, default=str)}
    return {"type": "text", "text": item.text}


def _to_anthropic_messages(messages: list[Message]) -> list[dict]:
    """Convert internal messages to Anthropic API format."""
    result = []
    for msg in messages:
        content: list[dict] = []
        for block in msg.content:
            if isinstance(block, CachePointBlock):
                # A cache point marks the end of the preceding block.
                if content:
                    content[-1]["cache_control"] = {"type": "ephemeral"}
                continue
            converted = _to_anthropic_block(block)
            if converted is not None:
                content.append(converted)

        if not content:
            logger.debug(f"Skipping {msg.role.value} message with no Anthropic-compatible content")
            continue
        result.append({"role": msg.role.value, "content": content})
    return result
