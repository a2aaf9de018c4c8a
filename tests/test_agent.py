from contextlib import aclosing

import pytest

from turnloop.agent.loop import Agent
from turnloop.errors import (
    MaxRoundsExceededError,
    ModelProviderError,
    ProtocolViolationError,
    TurnInProgressError,
)
from turnloop.messages import Message, Role, StopReason, TextBlock, ToolResultBlock, ToolUseBlock
from turnloop.models.base import ToolPolicy
from turnloop.models.events import (
    RawBlockDelta,
    RawBlockStart,
    RawMessageStart,
)
from turnloop.tools.base import BaseTool, ToolSpec

from tests.mock_adapter import ScriptedAdapter, text_round, tool_use_round


class LookupTool(BaseTool):
    name = "lookup"
    description = "Look up the answer."
    parameters = {"type": "object", "properties": {}}

    def __init__(self):
        self.calls = []

    async def invoke(self, input, context):
        self.calls.append((input, context.tool_use_id, context.round))
        return [TextBlock(text="42")]


async def collect(agent):
    return [event async for event in agent.turn()]


@pytest.mark.asyncio
async def test_end_turn_appends_one_message_and_stops():
    adapter = ScriptedAdapter([text_round("Hello")])
    agent = Agent(adapter, messages=[Message.user("hi")])

    events = await collect(agent)

    assert [e.type for e in events] == [
        "message_start",
        "text_start",
        "text_delta",
        "content_block_complete",
        "message_complete",
    ]
    assert events[2].delta == "Hello"
    assert events[3].block == TextBlock(text="Hello")
    assert events[4].stop_reason == StopReason.END_TURN

    history = agent.messages()
    assert len(history) == 2
    assert history[1] == Message.assistant("Hello")
    assert len(adapter.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("stop_reason", [StopReason.MAX_TOKENS, StopReason.CONTENT_FILTERED, StopReason.STOP_SEQUENCE])
async def test_other_stop_reasons_are_terminal(stop_reason):
    adapter = ScriptedAdapter([text_round("partial", stop_reason=stop_reason)])
    agent = Agent(adapter, messages=[Message.user("hi")])

    events = await collect(agent)

    assert events[-1].stop_reason == stop_reason
    assert len(agent.messages()) == 2
    assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_tool_use_round_executes_tool_and_generates_again():
    tool = LookupTool()
    adapter = ScriptedAdapter([
        tool_use_round([("t1", "lookup", "{}")]),
        text_round("The answer is 42"),
    ])
    agent = Agent(adapter, tools=[tool], messages=[Message.user("What is the answer?")])

    await collect(agent)

    history = agent.messages()
    assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert history[1].content == [ToolUseBlock(id="t1", name="lookup", input={})]
    assert history[2].content == [ToolResultBlock.success("t1", [TextBlock(text="42")])]
    assert history[3].text() == "The answer is 42"
    assert tool.calls == [({}, "t1", 1)]

    assert len(adapter.calls) == 2
    second_snapshot = adapter.calls[1][0]
    assert second_snapshot == history[:3]


@pytest.mark.asyncio
async def test_unknown_tool_yields_error_result_and_continues():
    adapter = ScriptedAdapter([
        tool_use_round([("t1", "missing", "{}")]),
        text_round("Sorry, that tool is unavailable."),
    ])
    agent = Agent(adapter, messages=[Message.user("hi")])

    await collect(agent)

    result = agent.messages()[2].content[0]
    assert isinstance(result, ToolResultBlock)
    assert result.id == "t1"
    assert result.is_error
    assert len(adapter.calls) == 2


@pytest.mark.asyncio
async def test_tool_results_follow_call_order():
    tool = LookupTool()
    adapter = ScriptedAdapter([
        tool_use_round(
            [("a", "lookup", "{}"), ("b", "missing", ""), ("c", "lookup", '{"q": 1}')],
            text="Let me check.",
        ),
        text_round("Done"),
    ])
    agent = Agent(adapter, tools=[tool], messages=[Message.user("hi")])

    await collect(agent)

    assistant, results = agent.messages()[1:3]
    assert [b.id for b in assistant.tool_uses()] == ["a", "b", "c"]
    assert results.role == Role.USER
    assert [r.id for r in results.content] == ["a", "b", "c"]
    assert [r.status for r in results.content] == ["success", "error", "success"]


@pytest.mark.asyncio
async def test_tool_use_stop_without_tool_calls_ends_turn():
    adapter = ScriptedAdapter([text_round("I would call a tool", stop_reason=StopReason.TOOL_USE)])
    agent = Agent(adapter, messages=[Message.user("hi")])

    await collect(agent)

    assert len(agent.messages()) == 2
    assert len(adapter.calls) == 1


@pytest.mark.asyncio
async def test_stream_without_message_complete_is_a_protocol_violation():
    adapter = ScriptedAdapter([[
        RawMessageStart(role=Role.ASSISTANT),
        RawBlockStart(index=0, kind="text"),
        RawBlockDelta(index=0, text="cut off"),
    ]])
    agent = Agent(adapter, messages=[Message.user("hi")])
    seen = []

    with pytest.raises(ProtocolViolationError):
        async for event in agent.turn():
            seen.append(event.type)

    assert seen == ["message_start", "text_start", "text_delta"]
    assert agent.messages() == [Message.user("hi")]


@pytest.mark.asyncio
async def test_backend_error_aborts_turn_without_partial_message():
    adapter = ScriptedAdapter([
        tool_use_round([("t1", "lookup", "{}")]),
        [RawMessageStart(role=Role.ASSISTANT), ModelProviderError("connection reset", "scripted")],
    ])
    agent = Agent(adapter, tools=[LookupTool()], messages=[Message.user("hi")])

    with pytest.raises(ModelProviderError, match="connection reset"):
        await collect(agent)

    # The first round survives; the failed round left nothing behind.
    history = agent.messages()
    assert len(history) == 3
    assert history[2].content[0].id == "t1"


@pytest.mark.asyncio
async def test_max_rounds_stops_endless_tool_use():
    adapter = ScriptedAdapter([
        tool_use_round([("t1", "lookup", "{}")]),
        tool_use_round([("t2", "lookup", "{}")]),
        tool_use_round([("t3", "lookup", "{}")]),
    ])
    agent = Agent(adapter, tools=[LookupTool()], messages=[Message.user("hi")], max_rounds=2)

    with pytest.raises(MaxRoundsExceededError) as exc_info:
        await collect(agent)

    assert exc_info.value.max_rounds == 2
    assert len(adapter.calls) == 2
    assert len(agent.messages()) == 5


@pytest.mark.asyncio
async def test_params_carry_prompt_tools_and_sampling():
    class Provider:
        name = "remote"

        def tool_specs(self):
            return [ToolSpec(name="weather", description="Weather by city")]

        async def call_tool(self, name, input, context):
            return "sunny"

    adapter = ScriptedAdapter([text_round("ok")])
    agent = Agent(
        adapter,
        system_prompt="Be brief.",
        tools=[LookupTool()],
        providers=[Provider()],
        messages=[Message.user("hi")],
        max_tokens=256,
        temperature=0.2,
        stop_sequences=["END"],
        tool_policy=ToolPolicy.specific("lookup"),
    )

    await collect(agent)

    params = adapter.calls[0][1]
    assert params.system_prompt == "Be brief."
    assert [s.name for s in params.tool_specs] == ["lookup", "weather"]
    assert params.tool_policy == ToolPolicy(mode="specific", name="lookup")
    assert params.max_tokens == 256
    assert params.temperature == 0.2
    assert params.top_p is None
    assert params.stop_sequences == ["END"]


@pytest.mark.asyncio
async def test_no_tools_means_no_tool_specs():
    adapter = ScriptedAdapter([text_round("ok")])
    agent = Agent(adapter, messages=[Message.user("hi")])

    await collect(agent)

    assert adapter.calls[0][1].tool_specs is None


@pytest.mark.asyncio
async def test_closing_the_turn_closes_the_backend_stream():
    adapter = ScriptedAdapter([text_round("Hello")])
    agent = Agent(adapter, messages=[Message.user("hi")])

    stream = agent.turn()
    first = await stream.__anext__()
    assert first.type == "message_start"
    with pytest.raises(TurnInProgressError):
        agent.add_message(Message.user("interrupting"))

    await stream.aclose()

    assert adapter.closed == 1
    assert agent.messages() == [Message.user("hi")]
    agent.add_message(Message.user("again"))
    assert len(agent.messages()) == 2


@pytest.mark.asyncio
async def test_history_persists_across_turns():
    adapter = ScriptedAdapter([text_round("first"), text_round("second")])
    agent = Agent(adapter, messages=[Message.user("one")])

    await collect(agent)
    agent.add_message(Message.user("two"))
    await collect(agent)

    assert [m.text() for m in agent.messages()] == ["one", "first", "two", "second"]
    assert len(adapter.calls[1][0]) == 3


@pytest.mark.asyncio
async def test_turn_message_is_appended_only_when_the_turn_starts():
    adapter = ScriptedAdapter([text_round("first answer")])
    agent = Agent(adapter)

    running = agent.turn(Message.user("first"))
    await running.__anext__()
    assert agent.running

    competing = agent.turn(Message.user("second"))
    with pytest.raises(TurnInProgressError):
        await competing.__anext__()

    rest = [event async for event in running]

    assert rest[-1].type == "message_complete"
    assert [m.text() for m in agent.messages()] == ["first", "first answer"]
    assert not agent.running


@pytest.mark.asyncio
async def test_aclosing_releases_the_agent_after_an_early_break():
    adapter = ScriptedAdapter([text_round("Hello"), text_round("again")])
    agent = Agent(adapter, messages=[Message.user("hi")])

    async with aclosing(agent.turn()) as events:
        async for event in events:
            break

    assert not agent.running
    assert adapter.closed == 1
    await collect(agent)
    assert agent.messages()[-1].text() == "again"
