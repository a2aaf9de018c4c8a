"""
OpenAI-compatible adapter.
Works with Ollama (http://localhost:11434/v1), OpenAI, and any compatible endpoint.
Compatible with openai SDK v2.x.

Chat-completion chunks carry no block boundaries, so `ChunkMapper` opens and
closes blocks itself: text, reasoning (`reasoning_content` / `reasoning`, as
sent by DeepSeek, Ollama and vLLM) and one block per tool call index.
"""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, AsyncIterator, Optional

from openai import AsyncOpenAI, OpenAIError

from turnloop.errors import ModelProviderError
from turnloop.messages import (
    DocumentBlock,
    ImageBlock,
    JsonBlock,
    Message,
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

_FINISH_REASONS: dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.CONTENT_FILTERED,
}


class ChunkMapper:
    """Turns a sequence of chat-completion chunks into raw events."""

    def __init__(self) -> None:
        self._started = False
        self._finished = False
        self._next_index = 0
        self._text_index: Optional[int] = None
        self._reasoning_index: Optional[int] = None
        self._tool_indexes: dict[int, int] = {}  # provider tool-call index → block index
        self._open_tool: Optional[int] = None

    def _open(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _close_text(self) -> list[RawEvent]:
        events: list[RawEvent] = []
        if self._reasoning_index is not None:
            events.append(RawBlockStop(index=self._reasoning_index))
            self._reasoning_index = None
        if self._text_index is not None:
            events.append(RawBlockStop(index=self._text_index))
            self._text_index = None
        return events

    def _close_all(self) -> list[RawEvent]:
        events = self._close_text()
        if self._open_tool is not None:
            events.append(RawBlockStop(index=self._open_tool))
            self._open_tool = None
        return events

    def feed(self, chunk: Any) -> list[RawEvent]:
        if self._finished or not chunk.choices:
            return []

        events: list[RawEvent] = []
        if not self._started:
            self._started = True
            events.append(RawMessageStart(role=Role.ASSISTANT))

        choice = chunk.choices[0]
        delta = choice.delta

        reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
        if reasoning:
            if self._reasoning_index is None:
                self._reasoning_index = self._open()
                events.append(RawBlockStart(index=self._reasoning_index, kind="reasoning"))
            events.append(RawBlockDelta(index=self._reasoning_index, reasoning=reasoning))

        if delta.content:
            if self._reasoning_index is not None:
                events.append(RawBlockStop(index=self._reasoning_index))
                self._reasoning_index = None
            if self._text_index is None:
                self._text_index = self._open()
                events.append(RawBlockStart(index=self._text_index, kind="text"))
            events.append(RawBlockDelta(index=self._text_index, text=delta.content))

        for tc_delta in delta.tool_calls or []:
            if tc_delta.index not in self._tool_indexes:
                events.extend(self._close_all())
                block_index = self._open()
                self._tool_indexes[tc_delta.index] = block_index
                self._open_tool = block_index
                name = tc_delta.function.name if tc_delta.function else None
                events.append(RawBlockStart(index=block_index, kind="tool_use", id=tc_delta.id or "", name=name or ""))
            block_index = self._tool_indexes[tc_delta.index]
            if tc_delta.function and tc_delta.function.arguments:
                events.append(RawBlockDelta(index=block_index, partial_json=tc_delta.function.arguments))

        if choice.finish_reason:
            events.extend(self.finish(choice.finish_reason))
        return events

    @property
    def finished(self) -> bool:
        return self._finished

    def finish(self, finish_reason: str) -> list[RawEvent]:
        """Close everything still open. Safe to call more than once."""
        if self._finished or not self._started:
            return []
        self._finished = True
        events = self._close_all()
        events.append(RawMessageDelta(stop_reason=_FINISH_REASONS.get(finish_reason, StopReason.END_TURN)))
        events.append(RawMessageStop())
        return events


def _to_tool_choice(policy: ToolPolicy) -> Any:
    if policy.mode == "specific":
        return {"type": "function", "function": {"name": policy.name}}
    return policy.mode


def _result_text(result: ToolResultBlock) -> str:
    parts = []
    for item in result.content:
        if isinstance(item, JsonBlock):
            parts.append(json.dumps(item.value, default=str))
        else:
            parts.append(item.text)
    text = "\n".join(parts)
    return f"Error: {text}" if result.is_error else text


def _convert_content(blocks: list) -> str | list:
    """
    Convert user-visible blocks to OpenAI content parts:
      text     → {"type": "text", "text": "..."}
      image    → {"type": "image_url", "image_url": {"url": "data:mime;base64,..."}}
      document → its text, when it has one
    """
    result: list[dict] = []
    for block in blocks:
        if isinstance(block, TextBlock):
            result.append({"type": "text", "text": block.text})

        elif isinstance(block, ImageBlock):
            if block.url:
                url = block.url
            else:
                data = base64.b64encode(block.data or b"").decode("ascii")
                url = f"data:image/{block.format};base64,{data}"
            result.append({"type": "image_url", "image_url": {"url": url}})

        elif isinstance(block, DocumentBlock):
            if block.text is not None:
                result.append({"type": "text", "text": f"[{block.name}]\n{block.text}"})
            else:
                result.append({"type": "text", "text": f"[Document attached: {block.name}]"})

    if not result:
        return ""
    # If single plain-text block, return as string (better model compatibility)
    if len(result) == 1 and result[0].get("type") == "text":
        return result[0]["text"]
    return result


def _to_openai_messages(messages: list[Message], system: str) -> list[dict]:
    openai_messages: list[dict] = []
    if system:
        openai_messages.append({"role": "system", "content": system})

    for msg in messages:
        if msg.role == Role.ASSISTANT:
            tool_calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input if b.input is not None else {})},
                }
                for b in msg.content
                if isinstance(b, ToolUseBlock)
            ]
            entry: dict[str, Any] = {"role": "assistant", "content": msg.text() or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            openai_messages.append(entry)
            continue

        # Tool results become `tool` messages; the rest stays a user message.
        for block in msg.content:
            if isinstance(block, ToolResultBlock):
                openai_messages.append({"role": "tool", "tool_call_id": block.id, "content": _result_text(block)})
        content = _convert_content([b for b in msg.content if not isinstance(b, ToolResultBlock)])
        if content:
            openai_messages.append({"role": "user", "content": content})

    return openai_messages


class OpenAICompatAdapter(BaseModelAdapter):
    def __init__(self, model_name: str, base_url: str, api_key: str = "ollama"):
        self.model_name = model_name
        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    def build_request(self, messages: list[Message], params: StreamParams) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model":    self.model_name,
            "messages": _to_openai_messages(messages, system_prompt_text(params.system_prompt)),
            "stream":   True,
        }
        if params.tool_specs:
            kwargs["tools"] = [s.to_openai_schema() for s in params.tool_specs]
            if params.tool_policy is not None:
                kwargs["tool_choice"] = _to_tool_choice(params.tool_policy)
        if params.max_tokens is not None:
            kwargs["max_tokens"] = params.max_tokens
        if params.temperature is not None:
            kwargs["temperature"] = params.temperature
        if params.top_p is not None:
            kwargs["top_p"] = params.top_p
        if params.stop_sequences:
            kwargs["stop"] = params.stop_sequences
        return kwargs

    async def stream_raw(
        self,
        messages: list[Message],
        params: StreamParams,
    ) -> AsyncIterator[RawEvent]:
        kwargs = self.build_request(messages, params)
        mapper = ChunkMapper()

        try:
            # If the model doesn't support tools, retry once without them
            try:
                stream = await self._client.chat.completions.create(**kwargs)
            except OpenAIError as e:
                if "does not support tools" in str(e).lower() and "tools" in kwargs:
                    logger.warning(f"{self.model_name} does not support tools, retrying without them")
                    kwargs.pop("tools")
                    kwargs.pop("tool_choice", None)
                    stream = await self._client.chat.completions.create(**kwargs)
                else:
                    raise

            async with stream:
                async for chunk in stream:
                    for raw in mapper.feed(chunk):
                        yield raw

            if not mapper.finished:
                raise ModelProviderError("Stream ended without a finish reason", "openai")

        except OpenAIError as e:
            raise ModelProviderError(str(e), "openai") from e
