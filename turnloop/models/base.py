"""
Abstract base model interface.
All adapters must implement `stream_raw`; `stream` runs it through a fresh
StreamTranslator, so the agent loop only ever sees normalized events.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Literal, Optional

from pydantic import BaseModel, Field

from turnloop.messages import Message, SystemPrompt
from turnloop.models.events import RawEvent, StreamEvent
from turnloop.stream import StreamTranslator
from turnloop.tools.base import ToolSpec


class ToolPolicy(BaseModel):
    """How the model may use the tools it is offered."""

    mode: Literal["auto", "none", "required", "specific"] = "auto"
    name: Optional[str] = None  # only for mode="specific"

    @classmethod
    def specific(cls, name: str) -> "ToolPolicy":
        return cls(mode="specific", name=name)


class StreamParams(BaseModel):
    """Generation parameters for one request."""

    system_prompt: Optional[SystemPrompt] = None
    tool_specs: Optional[list[ToolSpec]] = None
    tool_policy: Optional[ToolPolicy] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop_sequences: Optional[list[str]] = Field(default=None)


class BaseModelAdapter(ABC):
    """Unified interface for all LLM providers."""

    model_name: str

    @abstractmethod
    def stream_raw(
        self,
        messages: list[Message],
        params: StreamParams,
    ) -> AsyncIterator[RawEvent]:
        """
        Yield the low-level events of one generation, in order:
          RawMessageStart, then per block RawBlockStart / RawBlockDelta* /
          RawBlockStop, optionally RawMessageDelta, and finally RawMessageStop.
        Transport failures raise ModelProviderError.
        """

    async def stream(
        self,
        messages: list[Message],
        params: StreamParams,
    ) -> AsyncIterator[StreamEvent]:
        translator = StreamTranslator()
        raw_events = self.stream_raw(messages, params)
        try:
            async for raw in raw_events:
                for event in translator.feed(raw):
                    yield event
        finally:
            aclose = getattr(raw_events, "aclose", None)
            if aclose is not None:
                await aclose()
