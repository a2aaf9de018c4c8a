from turnloop.messages import ReasoningBlock, Role, StopReason, TextBlock, ToolUseBlock
from turnloop.models.events import (
    ContentBlockCompleteEvent,
    MessageCompleteEvent,
    MessageStartEvent,
    RawBlockDelta,
    RawBlockStart,
    RawBlockStop,
    RawMessageDelta,
    RawMessageStart,
    RawMessageStop,
    ReasoningDeltaEvent,
    TextDeltaEvent,
    ToolInputDeltaEvent,
    ToolUseStartEvent,
)
from turnloop.stream import StreamTranslator, parse_tool_input


def feed_all(events):
    translator = StreamTranslator()
    out = []
    for event in events:
        out.extend(translator.feed(event))
    return out


def test_text_block_scenario():
    out = feed_all([
        RawMessageStart(role=Role.ASSISTANT),
        RawBlockStart(index=0, kind="text"),
        RawBlockDelta(index=0, text="Hel"),
        RawBlockDelta(index=0, text="lo"),
        RawBlockStop(index=0),
        RawMessageStop(),
    ])

    assert [e.type for e in out] == [
        "message_start",
        "text_start",
        "text_delta",
        "text_delta",
        "content_block_complete",
        "message_complete",
    ]
    assert out[0] == MessageStartEvent(role=Role.ASSISTANT)
    assert "".join(e.delta for e in out if isinstance(e, TextDeltaEvent)) == "Hello"
    assert out[4].block == TextBlock(text="Hello")

    complete = out[-1]
    assert isinstance(complete, MessageCompleteEvent)
    assert complete.stop_reason == StopReason.END_TURN
    assert complete.message.role == Role.ASSISTANT
    assert complete.message.content == [TextBlock(text="Hello")]


def test_tool_use_block_parses_accumulated_json():
    out = feed_all([
        RawMessageStart(),
        RawBlockStart(index=0, kind="tool_use", id="t1", name="lookup"),
        RawBlockDelta(index=0, partial_json='{"city": '),
        RawBlockDelta(index=0, partial_json='"Dallas"}'),
        RawBlockStop(index=0),
        RawMessageDelta(stop_reason=StopReason.TOOL_USE),
        RawMessageStop(),
    ])

    assert out[1] == ToolUseStartEvent(index=0, id="t1", name="lookup")
    deltas = [e.delta for e in out if isinstance(e, ToolInputDeltaEvent)]
    assert "".join(deltas) == '{"city": "Dallas"}'

    complete = out[-1]
    assert complete.stop_reason == StopReason.TOOL_USE
    assert complete.message.content == [ToolUseBlock(id="t1", name="lookup", input={"city": "Dallas"})]


def test_malformed_tool_input_becomes_empty_object():
    out = feed_all([
        RawMessageStart(),
        RawBlockStart(index=0, kind="tool_use", id="t1", name="lookup"),
        RawBlockDelta(index=0, partial_json='{"city": "Dal'),
        RawBlockStop(index=0),
        RawMessageStop(),
    ])

    block = out[-1].message.content[0]
    assert block.input == {}
    assert parse_tool_input('{"city": "Dal') == parse_tool_input("[1, 2")
    assert parse_tool_input("") == {}


def test_reasoning_block_collects_text_signature_and_redacted():
    out = feed_all([
        RawMessageStart(),
        RawBlockStart(index=0, kind="reasoning"),
        RawBlockDelta(index=0, reasoning="Let me "),
        RawBlockDelta(index=0, reasoning="think."),
        RawBlockDelta(index=0, signature="sig"),
        RawBlockDelta(index=0, redacted=b"\x00\x01"),
        RawBlockStop(index=0),
        RawMessageStop(),
    ])

    assert [e.type for e in out].count("reasoning_delta") == 4
    assert out[-2].block == ReasoningBlock(text="Let me think.", signature="sig", redacted=b"\x00\x01")
    signature_delta = [e for e in out if isinstance(e, ReasoningDeltaEvent)][2]
    assert signature_delta.signature == "sig"
    assert signature_delta.text is None


def test_last_stop_reason_wins():
    out = feed_all([
        RawMessageStart(),
        RawMessageDelta(stop_reason=StopReason.MAX_TOKENS),
        RawMessageDelta(stop_reason=None),
        RawMessageDelta(stop_reason=StopReason.STOP_SEQUENCE),
        RawMessageStop(),
    ])
    assert out[-1].stop_reason == StopReason.STOP_SEQUENCE
    assert out[-1].message.content == []


def test_events_for_unopened_blocks_are_ignored():
    out = feed_all([
        RawMessageStart(),
        RawBlockDelta(index=3, text="orphan"),
        RawBlockStop(index=3),
        RawBlockStart(index=0, kind="text"),
        RawBlockDelta(index=0, partial_json="{}"),  # wrong kind for a text block
        RawBlockStop(index=0),
        RawBlockStop(index=0),
        RawMessageStop(),
    ])

    assert [e.type for e in out] == ["message_start", "text_start", "content_block_complete", "message_complete"]
    assert out[-1].message.content == [TextBlock(text="")]


def test_interleaved_blocks_keep_order_of_first_appearance():
    out = feed_all([
        RawMessageStart(),
        RawBlockStart(index=0, kind="text"),
        RawBlockStart(index=1, kind="tool_use", id="t1", name="lookup"),
        RawBlockDelta(index=1, partial_json="{}"),
        RawBlockDelta(index=0, text="a"),
        RawBlockStop(index=1),
        RawBlockStop(index=0),
        RawMessageStop(),
    ])

    completes = [e for e in out if isinstance(e, ContentBlockCompleteEvent)]
    assert [e.index for e in completes] == [1, 0]
    assert out[-1].message.content == [
        TextBlock(text="a"),
        ToolUseBlock(id="t1", name="lookup", input={}),
    ]


def test_duplicate_index_and_unfinished_blocks_are_dropped():
    out = feed_all([
        RawMessageStart(),
        RawBlockStart(index=0, kind="text"),
        RawBlockDelta(index=0, text="kept"),
        RawBlockStop(index=0),
        RawBlockStart(index=0, kind="tool_use", id="t1", name="lookup"),
        RawBlockStart(index=1, kind="text"),
        RawBlockDelta(index=1, text="never finished"),
        RawMessageStop(),
    ])

    assert [e.type for e in out].count("tool_use_start") == 0
    assert out[-1].message.content == [TextBlock(text="kept")]


def test_one_message_complete_per_message_stop():
    translator = StreamTranslator()
    first = []
    for event in [RawMessageStart(), RawMessageDelta(stop_reason=StopReason.TOOL_USE), RawMessageStop()]:
        first.extend(translator.feed(event))
    second = []
    for event in [RawMessageStart(role=Role.ASSISTANT), RawMessageStop()]:
        second.extend(translator.feed(event))

    assert sum(isinstance(e, MessageCompleteEvent) for e in first) == 1
    assert sum(isinstance(e, MessageCompleteEvent) for e in second) == 1
    # State is reset between messages
    assert second[-1].stop_reason == StopReason.END_TURN
