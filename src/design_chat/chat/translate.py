"""
Agent SDK messages -> stream events.

The agent transport hands over raw SDK messages (``system``, ``assistant``,
``user``, ``result``); this module turns each into the stream events the
aggregator understands, and maps a failed request to the error event the user
sees.
"""

import json
from typing import Any

import structlog

from .entries import EntryAction
from .events import Chunk, StreamError, StreamErrorWithActions, StreamEvent, ToolResultFor, ToolUpdate

logger = structlog.get_logger()

# Raw error results with these markers are reported through failure_event()
AUTH_ERROR_MARKERS = (
    "api key",
    "authentication",
    "unauthorized",
    "anthropic",
    "process exited",
    "exit code",
)

# Final success results containing these are run summaries, not tool output
SUMMARY_MARKERS = ("successfully", "perfect", "created", "variations")

API_KEY_ACTIONS = [
    EntryAction(label="Configure API Key", command="superdesign.configureApiKey"),
    EntryAction(
        label="Open Settings",
        command="workbench.action.openSettings",
        args="@ext:iganbold.superdesign",
    ),
]


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def _base_metadata(message: dict[str, Any]) -> dict[str, Any]:
    return {
        "session_id": message.get("session_id"),
        "parent_tool_use_id": message.get("parent_tool_use_id"),
    }


def _text_chunks(message: dict[str, Any], message_type: str) -> list[StreamEvent]:
    """Chunks for the plain-text shapes of assistant/user messages."""
    body = message.get("message")
    subtype = message.get("subtype")

    if isinstance(body, str):
        content = body
    elif isinstance(body.get("content"), str):
        content = body["content"]
    elif body.get("text"):
        content = body["text"]
    else:
        logger.debug("No content found in message", type=message_type)
        return []

    if not content.strip():
        return []
    return [Chunk(
        message_type=message_type,
        content=content,
        subtype=subtype,
        metadata=_base_metadata(message),
    )]


def _translate_assistant(message: dict[str, Any]) -> list[StreamEvent]:
    body = message["message"]
    if isinstance(body, str) or not isinstance(body.get("content"), list):
        return _text_chunks(message, "assistant")

    events: list[StreamEvent] = []
    for item in body["content"]:
        item_type = item.get("type")
        if item_type == "text" and item.get("text"):
            events.append(Chunk(
                message_type="assistant",
                content=item["text"],
                subtype=message.get("subtype"),
                metadata=_base_metadata(message),
            ))
        elif item_type == "tool_use":
            events.append(Chunk(
                message_type="tool",
                content="",
                subtype="tool_use",
                metadata={
                    **_base_metadata(message),
                    "tool_name": item.get("name") or "Unknown Tool",
                    "tool_id": item.get("id"),
                    "tool_input": item.get("input") or {},
                },
            ))
    return events


def _translate_user(message: dict[str, Any]) -> list[StreamEvent]:
    body = message["message"]
    if isinstance(body, str) or not isinstance(body.get("content"), list):
        return _text_chunks(message, "user")

    events: list[StreamEvent] = []
    for item in body["content"]:
        item_type = item.get("type")
        if item_type == "tool_result" and item.get("tool_use_id"):
            events.append(ToolResultFor(
                tool_use_id=item["tool_use_id"],
                content=_as_text(item.get("content", "")),
                is_error=bool(item.get("is_error", False)),
            ))
        elif item_type == "tool_parameter_update" and item.get("tool_use_id"):
            events.append(ToolUpdate(
                tool_use_id=item["tool_use_id"],
                tool_input=item.get("parameters"),
            ))
        elif item_type == "text" and item.get("text"):
            events.append(Chunk(
                message_type="user",
                content=item["text"],
                subtype=message.get("subtype"),
                metadata=_base_metadata(message),
            ))
    return events


def _translate_result(message: dict[str, Any]) -> list[StreamEvent]:
    subtype = message.get("subtype")

    if message.get("is_error"):
        raw = json.dumps(message, ensure_ascii=False, default=str).lower()
        if any(marker in raw for marker in AUTH_ERROR_MARKERS):
            logger.debug("Skipping raw authentication error result")
            return []

    result = message.get("result")
    if subtype == "success" and isinstance(result, str):
        lowered = result.lower()
        if any(marker in lowered for marker in SUMMARY_MARKERS):
            logger.debug("Skipping final summary result")
            return []

    if isinstance(message.get("message"), str):
        content = message["message"]
    elif message.get("content"):
        content = _as_text(message["content"])
    elif message.get("text"):
        content = message["text"]
    elif isinstance(result, str):
        content = result
    else:
        logger.debug("Skipping result message with no readable content")
        return []

    result_type = "result"
    is_error = False
    if subtype:
        if "error" in subtype:
            result_type = "error"
            is_error = True
        elif subtype == "success":
            result_type = "success"

    if not content.strip():
        return []

    return [Chunk(
        message_type="tool-result",
        content=content,
        subtype=subtype,
        metadata={
            **_base_metadata(message),
            "result_type": result_type,
            "is_error": is_error,
            "duration_ms": message.get("duration_ms"),
            "total_cost_usd": message.get("total_cost_usd"),
        },
    )]


def translate_agent_message(message: dict[str, Any]) -> list[StreamEvent]:
    """Turn one raw agent SDK message into stream events.

    Unknown or malformed messages yield no events.
    """
    message_type = message.get("type")

    try:
        if message_type == "system":
            return []
        if message_type == "assistant" and message.get("message"):
            return _translate_assistant(message)
        if message_type == "user" and message.get("message"):
            return _translate_user(message)
        if message_type == "result":
            return _translate_result(message)
    except (AttributeError, KeyError, TypeError) as e:
        logger.warning("Malformed agent message", type=message_type, error=str(e))
        return []

    logger.debug("Ignoring agent message", type=message_type)
    return []


def is_api_key_error(error_message: str) -> bool:
    """Check whether a failure looks like a missing or rejected API key."""
    lowered = error_message.lower()
    return any(marker in lowered for marker in AUTH_ERROR_MARKERS)


def failure_event(error_message: str, has_api_key: bool = True) -> StreamEvent:
    """Map a failed agent request to the error event shown to the user."""
    if is_api_key_error(error_message) or not has_api_key:
        display = (
            "Invalid AI API key · Fix AI API key"
            if has_api_key
            else "AI API key required · Configure AI API key"
        )
        return StreamErrorWithActions(message=display, actions=list(API_KEY_ACTIONS))

    return StreamError(message=error_message)
