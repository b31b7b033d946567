"""
Tests for agent message translation.
"""

from design_chat.chat.aggregator import StreamAggregator
from design_chat.chat.events import Chunk, StreamError, StreamErrorWithActions, ToolResultFor, ToolUpdate
from design_chat.chat.translate import failure_event, is_api_key_error, translate_agent_message


def test_system_messages_are_skipped():
    """Test system messages produce no events."""
    assert translate_agent_message({"type": "system", "subtype": "init"}) == []


def test_assistant_text_and_tool_use():
    """Test assistant content blocks become chunks."""
    message = {
        "type": "assistant",
        "session_id": "sess",
        "parent_tool_use_id": None,
        "message": {
            "content": [
                {"type": "text", "text": "Creating the design"},
                {"type": "tool_use", "id": "toolu_1", "name": "Write", "input": {"file_path": "a.html"}},
                {"type": "tool_use", "id": "toolu_2"},
            ]
        },
    }

    events = translate_agent_message(message)

    assert len(events) == 3
    assert events[0] == Chunk(
        message_type="assistant",
        content="Creating the design",
        metadata={"session_id": "sess", "parent_tool_use_id": None},
    )
    assert events[1].message_type == "tool"
    assert events[1].subtype == "tool_use"
    assert events[1].metadata["tool_id"] == "toolu_1"
    assert events[1].metadata["tool_input"] == {"file_path": "a.html"}
    assert events[2].metadata["tool_name"] == "Unknown Tool"


def test_assistant_plain_string():
    """Test string-shaped assistant messages."""
    events = translate_agent_message({"type": "assistant", "message": "hello"})
    assert events[0].content == "hello"

    assert translate_agent_message({"type": "assistant", "message": {"content": "   "}}) == []


def test_user_tool_results_and_updates():
    """Test user messages carrying tool results and parameter updates."""
    message = {
        "type": "user",
        "message": {
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": "ok"},
                {"type": "tool_result", "tool_use_id": "toolu_2", "content": [{"type": "text", "text": "x"}], "is_error": True},
                {"type": "tool_parameter_update", "tool_use_id": "toolu_1", "parameters": {"a": 1}},
                {"type": "text", "text": "note"},
            ]
        },
    }

    events = translate_agent_message(message)

    assert events[0] == ToolResultFor(tool_use_id="toolu_1", content="ok", is_error=False)
    assert events[1].is_error is True
    assert events[1].content == '[{"type": "text", "text": "x"}]'
    assert events[2] == ToolUpdate(tool_use_id="toolu_1", tool_input={"a": 1})
    assert events[3].message_type == "user"


def test_result_messages():
    """Test result messages become tool-result chunks with their stats."""
    message = {
        "type": "result",
        "subtype": "error_max_turns",
        "result": "Hit the turn limit",
        "duration_ms": 1200,
        "total_cost_usd": 0.05,
    }

    events = translate_agent_message(message)

    assert len(events) == 1
    assert events[0].message_type == "tool-result"
    assert events[0].metadata["result_type"] == "error"
    assert events[0].metadata["is_error"] is True
    assert events[0].metadata["duration_ms"] == 1200


def test_result_summaries_and_auth_errors_are_suppressed():
    """Test final summaries and raw auth errors are not shown."""
    summary = {"type": "result", "subtype": "success", "result": "Successfully created 3 variations"}
    auth = {"type": "result", "is_error": True, "result": "Invalid API key"}
    empty = {"type": "result", "subtype": "success"}

    assert translate_agent_message(summary) == []
    assert translate_agent_message(auth) == []
    assert translate_agent_message(empty) == []


def test_malformed_messages_yield_nothing():
    """Test odd shapes never raise."""
    assert translate_agent_message({"type": "assistant", "message": {"content": [None]}}) == []
    assert translate_agent_message({"type": "mystery"}) == []


def test_translated_stream_aggregates():
    """Test translated events drive the aggregator end to end."""
    aggregator = StreamAggregator()
    stream = [
        {"type": "assistant", "message": {"content": [
            {"type": "tool_use", "id": "a", "name": "Task", "input": {}},
        ]}},
        {"type": "assistant", "parent_tool_use_id": "a", "message": {"content": [
            {"type": "tool_use", "id": "b", "name": "Read", "input": {}},
        ]}},
        {"type": "user", "message": {"content": [
            {"type": "tool_result", "tool_use_id": "b", "content": "read ok"},
        ]}},
    ]

    for message in stream:
        for event in translate_agent_message(message):
            aggregator.apply(event)

    assert len(aggregator.entries) == 1
    group = aggregator.entries[0]
    assert group.kind == "tool-group"
    assert group.children[1].tool.tool_result == "read ok"


def test_failure_event_api_key():
    """Test API key failures offer actions."""
    missing = failure_event("anything", has_api_key=False)
    invalid = failure_event("401 Unauthorized")

    assert isinstance(missing, StreamErrorWithActions)
    assert missing.message == "AI API key required · Configure AI API key"
    assert [a.label for a in missing.actions] == ["Configure API Key", "Open Settings"]
    assert isinstance(invalid, StreamErrorWithActions)
    assert invalid.message == "Invalid AI API key · Fix AI API key"


def test_failure_event_plain():
    """Test other failures become plain errors."""
    event = failure_event("network timeout")

    assert event == StreamError(message="network timeout")
    assert is_api_key_error("network timeout") is False
