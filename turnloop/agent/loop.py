"""
Agent execution loop.
Handles multi-round tool use, forwarding stream events as they arrive.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable, Optional

from turnloop.errors import MaxRoundsExceededError, ProtocolViolationError, TurnInProgressError
from turnloop.history import ConversationHistory
from turnloop.messages import Message, Role, StopReason, SystemPrompt
from turnloop.models.base import BaseModelAdapter, StreamParams, ToolPolicy
from turnloop.models.events import MessageCompleteEvent, StreamEvent
from turnloop.tools.base import BaseTool
from turnloop.tools.provider import ToolProvider
from turnloop.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class Agent:
    """
    Drives turns against one model adapter.

    A turn repeats generate → execute tools until the model stops for any
    reason other than tool use. Each round appends the assistant message and,
    when tools ran, one user message holding their results in call order.
    """

    def __init__(
        self,
        adapter: BaseModelAdapter,
        *,
        system_prompt: Optional[SystemPrompt] = None,
        tools: Iterable[BaseTool] = (),
        providers: Iterable[ToolProvider] = (),
        messages: Optional[Iterable[Message]] = None,
        max_tokens: Optional[int] = 4096,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        stop_sequences: Optional[list[str]] = None,
        tool_policy: Optional[ToolPolicy] = None,
        max_rounds: Optional[int] = None,
        parallel_tool_calls: bool = True,
        state: Optional[dict] = None,
    ):
        self._adapter = adapter
        self._system_prompt = system_prompt
        self._registry = ToolRegistry(tools, providers)
        self._history = ConversationHistory(messages)
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._top_p = top_p
        self._stop_sequences = stop_sequences
        self._tool_policy = tool_policy
        self._max_rounds = max_rounds
        self._parallel_tool_calls = parallel_tool_calls
        self.state: dict = state if state is not None else {}
        self._turn_active = False

    @property
    def adapter(self) -> BaseModelAdapter:
        return self._adapter

    @property
    def tools(self) -> ToolRegistry:
        return self._registry

    def messages(self) -> list[Message]:
        """Snapshot of the conversation history."""
        return self._history.snapshot()

    def add_message(self, message: Message) -> None:
        """Append a caller message (usually the next user prompt) between turns."""
        if self._turn_active:
            raise TurnInProgressError("Cannot add a message while a turn is running")
        self._history.append(message)

    def build_params(self) -> StreamParams:
        tool_specs = self._registry.tool_specs()
        return StreamParams(
            system_prompt=self._system_prompt,
            tool_specs=tool_specs or None,
            tool_policy=self._tool_policy,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            top_p=self._top_p,
            stop_sequences=self._stop_sequences,
        )

    @property
    def running(self) -> bool:
        """True while a turn iterator is active."""
        return self._turn_active

    async def turn(self, message: Optional[Message] = None) -> AsyncIterator[StreamEvent]:
        """
        Run one turn. Yields StreamEvents as the backend produces them; any
        fatal error is raised from the iterator after the events seen so far.

        `message`, when given, is appended once the turn is claimed, so a
        caller racing another turn never adds it to the history.

        The agent stays busy until the iterator finishes or is closed. A caller
        that may stop early should close it, e.g.

            async with contextlib.aclosing(agent.turn(msg)) as events:
                async for event in events:
                    ...
        """
        if self._turn_active:
            raise TurnInProgressError("A turn is already running")
        self._turn_active = True
        try:
            if message is not None:
                self._history.append(message)
            round_index = 0
            while True:
                if self._max_rounds is not None and round_index >= self._max_rounds:
                    raise MaxRoundsExceededError(self._max_rounds)
                round_index += 1
                logger.info(f"Round {round_index} with {self._adapter.model_name}")

                completed: Optional[MessageCompleteEvent] = None
                events = self._adapter.stream(self._history.snapshot(), self.build_params())
                try:
                    async for event in events:
                        yield event
                        if isinstance(event, MessageCompleteEvent):
                            completed = event
                            break
                finally:
                    await events.aclose()

                if completed is None:
                    raise ProtocolViolationError("Backend stream ended without a completed message")

                self._history.append(completed.message)

                if completed.stop_reason != StopReason.TOOL_USE:
                    logger.info(f"Turn finished after {round_index} round(s): {completed.stop_reason.value}")
                    return

                tool_uses = completed.message.tool_uses()
                if not tool_uses:
                    logger.warning("Stop reason is tool_use but the message has no tool calls, ending turn")
                    return

                results = await self._registry.invoke_all(
                    tool_uses,
                    round=round_index,
                    state=self.state,
                    parallel=self._parallel_tool_calls,
                )
                self._history.append(Message(role=Role.USER, content=results))
        finally:
            self._turn_active = False
