"""
Tests for stream aggregation.
"""

from design_chat.chat.aggregator import StreamAggregator
from design_chat.chat.entries import (
    AssistantEntry,
    EntryAction,
    ErrorEntry,
    ResultEntry,
    ToolEntry,
    ToolGroupEntry,
    ToolResultEntry,
    UnknownEntry,
    UserInputEntry,
)
from design_chat.chat.events import (
    Chunk,
    Response,
    Stopped,
    StreamEnd,
    StreamError,
    StreamErrorWithActions,
    StreamStart,
    ToolResultFor,
    ToolUpdate,
)


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def tool_chunk(tool_id: str, tool_name: str, parent: str | None = None, **extra) -> Chunk:
    metadata = {"tool_id": tool_id, "tool_name": tool_name, "tool_input": extra.pop("tool_input", {})}
    if parent:
        metadata["parent_tool_use_id"] = parent
    metadata.update(extra)
    return Chunk(message_type="tool", content="", subtype="tool_use", metadata=metadata)


def test_assistant_chunks_concatenate():
    """Streamed assistant text accumulates into one entry."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(Chunk(message_type="assistant", content="Hel"))
    aggregator.apply(Chunk(message_type="assistant", content="lo"))

    assert len(aggregator.entries) == 1
    assert isinstance(aggregator.entries[0], AssistantEntry)
    assert aggregator.entries[0].text == "Hello"


def test_many_chunks_equal_concatenation():
    """Test accumulated text equals the ordered concatenation of chunks."""
    parts = ["The ", "quick ", "brown ", "", "fox", " jumps"]
    aggregator = StreamAggregator()
    for part in parts:
        aggregator.apply(Chunk(message_type="assistant", content=part))

    assert len(aggregator.entries) == 1
    assert aggregator.entries[0].text == "".join(parts)


def test_chunk_metadata_shallow_merge():
    """Test chunk metadata merges with new keys winning."""
    aggregator = StreamAggregator()
    aggregator.apply(Chunk(message_type="assistant", content="a", metadata={"session_id": "s1", "x": 1}))
    aggregator.apply(Chunk(message_type="assistant", content="b", metadata={"x": 2, "y": 3}))

    assert aggregator.entries[0].metadata == {"session_id": "s1", "x": 2, "y": 3}


def test_different_kind_starts_new_entry():
    """Test a chunk of another kind appends a new entry."""
    aggregator = StreamAggregator()
    aggregator.apply(Chunk(message_type="assistant", content="thinking"))
    aggregator.apply(Chunk(message_type="result", content="done", subtype="success"))
    aggregator.apply(Chunk(message_type="assistant", content="more"))

    assert [e.kind for e in aggregator.entries] == ["assistant", "result", "assistant"]
    assert aggregator.entries[1].subtype == "success"


def test_stream_start_appends_empty_assistant_and_signals_collapse():
    """Test stream start creates a placeholder and emits the collapse signal."""
    signals = []
    aggregator = StreamAggregator()
    aggregator.add_collapse_listener(lambda: signals.append("collapse"))

    aggregator.apply(StreamStart())

    assert signals == ["collapse"]
    assert aggregator.awaiting_response is True
    assert isinstance(aggregator.entries[-1], AssistantEntry)
    assert aggregator.entries[-1].text == ""


def test_failing_collapse_listener_does_not_break_stream():
    """Test a broken UI listener cannot stop event application."""
    def broken():
        raise RuntimeError("webview gone")

    aggregator = StreamAggregator()
    aggregator.add_collapse_listener(broken)
    assert aggregator.apply(StreamStart()) is True
    assert len(aggregator.entries) == 1


def test_new_tool_starts_loading():
    """Test a new tool entry starts open with an estimate."""
    clock = FakeClock(50.0)
    aggregator = StreamAggregator(clock=clock)
    aggregator.apply(tool_chunk("t1", "Read", tool_input={"file_path": "a.css"}))

    entry = aggregator.entries[0]
    assert isinstance(entry, ToolEntry)
    assert entry.tool.is_loading is True
    assert entry.tool.progress_pct == 0
    assert entry.tool.started_at == 50.0
    assert entry.tool.estimated_duration_sec == 5.0
    assert entry.tool.tool_input == {"file_path": "a.css"}
    assert [t.tool_id for t in aggregator.open_tools()] == ["t1"]


def test_child_tool_promotes_parent_to_group():
    """A child tool turns its parent into a group."""
    aggregator = StreamAggregator()
    aggregator.apply(Chunk(message_type="assistant", content="Let me look"))
    aggregator.apply(tool_chunk("t1", "Read"))
    original = aggregator.entries[1]

    aggregator.apply(tool_chunk("t2", "Write", parent="t1"))

    assert len(aggregator.entries) == 2
    group = aggregator.entries[1]
    assert isinstance(group, ToolGroupEntry)
    assert group.group_id == "t1"
    assert [child.tool_id for child in group.children] == ["t1", "t2"]
    assert group.children[0] is original


def test_child_tool_appends_to_existing_group():
    """Test later children join the existing group in arrival order."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Task"))
    aggregator.apply(tool_chunk("t2", "Read", parent="t1"))
    aggregator.apply(tool_chunk("t3", "Grep", parent="t1"))

    assert len(aggregator.entries) == 1
    group = aggregator.entries[0]
    assert [child.tool_id for child in group.children] == ["t1", "t2", "t3"]


def test_child_with_unknown_parent_is_standalone():
    """Test a child whose parent is unknown becomes a top-level tool."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Read"))
    aggregator.apply(tool_chunk("t2", "Write", parent="missing"))

    assert [e.kind for e in aggregator.entries] == ["tool", "tool"]
    assert aggregator.entries[1].tool.parent_tool_id == "missing"


def test_tool_chunk_missing_metadata_is_dropped():
    """Test tool chunks without tool_id or tool_name are dropped with a warning."""
    aggregator = StreamAggregator()
    changed = aggregator.apply(Chunk(message_type="tool", metadata={"tool_name": "Read"}))

    assert changed is False
    assert aggregator.entries == []
    assert len(aggregator.warnings) == 1


def test_duplicate_tool_id_is_dropped():
    """Test tool ids stay unique within the session."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Read"))
    aggregator.apply(tool_chunk("t1", "Write"))

    assert len(aggregator.entries) == 1
    assert aggregator.entries[0].tool.tool_name == "Read"
    assert aggregator.warnings


def test_tool_result_completes_tool():
    """Test a tool result closes the matching tool."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Read"))
    aggregator.apply(ToolResultFor(tool_use_id="t1", content="file contents", is_error=False))

    tool = aggregator.entries[0].tool
    assert tool.result_received is True
    assert tool.is_loading is False
    assert tool.progress_pct == 100
    assert tool.tool_result == "file contents"
    assert tool.result_is_error is False
    assert tool.elapsed_sec == tool.estimated_duration_sec
    assert aggregator.open_tools() == []


def test_tool_result_completes_nested_tool():
    """Test results find tools nested inside a group."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Task"))
    aggregator.apply(tool_chunk("t2", "Read", parent="t1"))
    aggregator.apply(ToolResultFor(tool_use_id="t2", content="nested", is_error=True))

    group = aggregator.entries[0]
    child = group.children[1].tool
    assert child.result_received is True
    assert child.is_loading is False
    assert child.progress_pct == 100
    assert child.tool_result == "nested"
    assert group.result_is_error is True
    assert group.is_loading is True


def test_group_status_reduces_over_children():
    """Test group loading/error flags follow their children."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Task"))
    aggregator.apply(tool_chunk("t2", "Read", parent="t1"))
    group = aggregator.entries[0]

    assert group.is_loading is True
    assert group.result_is_error is False

    aggregator.apply(ToolResultFor(tool_use_id="t1", content="ok"))
    assert group.is_loading is True

    aggregator.apply(ToolResultFor(tool_use_id="t2", content="ok"))
    assert group.is_loading is False
    assert group.result_received is True
    assert group.result_is_error is False


def test_unknown_tool_result_leaves_history_unchanged():
    """An unmatched result only records a warning."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Read"))
    before = [entry.to_dict() for entry in aggregator.entries]

    changed = aggregator.apply(ToolResultFor(tool_use_id="nope", content="?"))

    assert changed is False
    assert [entry.to_dict() for entry in aggregator.entries] == before
    assert len(aggregator.warnings) == 1
    assert "nope" in aggregator.parked_result_ids


def test_parked_result_applies_when_call_arrives():
    """Test a result that arrived before its call completes the call later."""
    aggregator = StreamAggregator()
    aggregator.apply(ToolResultFor(tool_use_id="t9", content="early", is_error=False))
    aggregator.apply(tool_chunk("t9", "Grep"))

    tool = aggregator.entries[0].tool
    assert tool.result_received is True
    assert tool.tool_result == "early"
    assert aggregator.parked_result_ids == []
    assert aggregator.open_tools() == []


def test_parked_results_are_bounded():
    """Test the oldest parked results are evicted."""
    aggregator = StreamAggregator(orphan_result_limit=2)
    for tool_id in ["a", "b", "c"]:
        aggregator.apply(ToolResultFor(tool_use_id=tool_id, content=tool_id))

    assert aggregator.parked_result_ids == ["b", "c"]


def test_tool_update_replaces_input():
    """Test tool parameter updates reach the matching tool."""
    aggregator = StreamAggregator()
    aggregator.apply(tool_chunk("t1", "Write", tool_input={"file_path": "a"}))
    aggregator.apply(ToolUpdate(tool_use_id="t1", tool_input={"file_path": "b", "content": "x"}))

    assert aggregator.entries[0].tool.tool_input == {"file_path": "b", "content": "x"}


def test_standalone_tool_result_chunk():
    """Test tool-result chunks append separate entries."""
    aggregator = StreamAggregator()
    aggregator.apply(Chunk(message_type="tool-result", content="one", metadata={"result_type": "result"}))
    aggregator.apply(Chunk(message_type="tool-result", content="two"))

    assert len(aggregator.entries) == 2
    assert all(isinstance(e, ToolResultEntry) for e in aggregator.entries)


def test_unknown_chunk_kind_is_kept_verbatim():
    """Test chunks of unmodelled kinds keep their kind."""
    aggregator = StreamAggregator()
    aggregator.apply(Chunk(message_type="user", content="echo"))
    aggregator.apply(Chunk(message_type="user", content=" again"))

    assert len(aggregator.entries) == 1
    assert isinstance(aggregator.entries[0], UnknownEntry)
    assert aggregator.entries[0].kind == "user"
    assert aggregator.entries[0].text == "echo again"


def test_stream_end_clears_awaiting():
    """Test stream end clears the awaiting flag."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(StreamEnd())

    assert aggregator.awaiting_response is False


def test_stopped_replaces_empty_assistant():
    """Stopping before any text swaps the placeholder for a notice."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(Stopped())

    assert len(aggregator.entries) == 1
    entry = aggregator.entries[0]
    assert isinstance(entry, ResultEntry)
    assert entry.subtype == "stopped"
    assert entry.text == "Response stopped by user."
    assert aggregator.awaiting_response is False


def test_stopped_keeps_assistant_with_text():
    """Test stopping after some text keeps that text."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(Chunk(message_type="assistant", content="Partial"))
    aggregator.apply(Stopped())

    assert [e.kind for e in aggregator.entries] == ["assistant", "result"]
    assert aggregator.entries[0].text == "Partial"


def test_stopped_is_idempotent():
    """Test repeated stops or stops after the stream ended add nothing."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(Chunk(message_type="assistant", content="Done"))
    aggregator.apply(StreamEnd())

    assert aggregator.apply(Stopped()) is False
    assert [e.kind for e in aggregator.entries] == ["assistant"]

    aggregator.apply(StreamStart())
    aggregator.apply(Stopped())
    aggregator.apply(Stopped())
    assert [e.kind for e in aggregator.entries] == ["assistant", "result"]


def test_stopped_after_empty_stream_end_is_ignored():
    """Test a stop after an ended stream leaves its empty placeholder alone."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(StreamEnd())

    assert aggregator.apply(Stopped()) is False
    assert [e.kind for e in aggregator.entries] == ["assistant"]
    assert aggregator.entries[0].text == ""


def test_error_appends_error_result():
    """Test errors become result entries."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(StreamError(message="boom"))

    entry = aggregator.entries[-1]
    assert isinstance(entry, ResultEntry)
    assert entry.subtype == "error"
    assert entry.text == "Error: boom"
    assert entry.metadata["is_error"] is True
    assert aggregator.awaiting_response is False


def test_error_with_actions_keeps_actions():
    """Test actionable errors carry their actions."""
    actions = [EntryAction(label="Configure API Key", command="superdesign.configureApiKey")]
    aggregator = StreamAggregator()
    aggregator.apply(StreamErrorWithActions(message="AI API key required", actions=actions))

    entry = aggregator.entries[0]
    assert isinstance(entry, ErrorEntry)
    assert entry.actions == actions
    assert entry.text == "AI API key required"


def test_response_appends_complete_assistant():
    """Test legacy full responses."""
    aggregator = StreamAggregator()
    aggregator.add_user_input("hi")
    aggregator.apply(Response(text="Hello there"))

    assert isinstance(aggregator.entries[0], UserInputEntry)
    assert aggregator.entries[1].text == "Hello there"
    assert aggregator.awaiting_response is False


def test_unknown_event_is_ignored():
    """Test unknown event objects never raise."""
    aggregator = StreamAggregator()
    assert aggregator.apply(object()) is False
    assert aggregator.warnings == ["Ignoring unknown stream event"]
    assert aggregator.entries == []


def test_open_tools_rebuilt_from_loaded_entries():
    """Test loading a history re-registers its open tools."""
    first = StreamAggregator()
    first.apply(tool_chunk("t1", "Read"))
    first.apply(tool_chunk("t2", "Bash"))
    first.apply(ToolResultFor(tool_use_id="t1", content="ok"))

    second = StreamAggregator(entries=list(first.entries))
    assert [tool.tool_id for tool in second.open_tools()] == ["t2"]


def test_clear_resets_everything():
    """Test clearing the history."""
    aggregator = StreamAggregator()
    aggregator.apply(StreamStart())
    aggregator.apply(tool_chunk("t1", "Read"))
    aggregator.apply(ToolResultFor(tool_use_id="zzz", content=""))

    aggregator.clear()

    assert aggregator.entries == []
    assert aggregator.open_tools() == []
    assert aggregator.parked_result_ids == []
    assert aggregator.warnings == []
    assert aggregator.awaiting_response is False
