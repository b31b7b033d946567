"""
Stream events pushed by the agent transport.

Each event is a small dataclass; ``parse_event`` decodes the tagged wire
records (``{"type": "chunk", ...}``) the transport delivers.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from .entries import EntryAction

logger = structlog.get_logger()


@dataclass
class StreamStart:
    """A new assistant turn begins."""


@dataclass
class Chunk:
    """One incremental piece of streamed content."""

    message_type: str
    content: str = ""
    subtype: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultFor:
    """The result of an earlier tool call."""

    tool_use_id: str
    content: str = ""
    is_error: bool = False


@dataclass
class ToolUpdate:
    """Revised input parameters for an earlier tool call."""

    tool_use_id: str
    tool_input: Any = None


@dataclass
class StreamEnd:
    """The agent finished the turn."""


@dataclass
class Response:
    """A complete, non-streamed assistant reply."""

    text: str = ""


@dataclass
class Stopped:
    """The user stopped the response."""


@dataclass
class StreamError:
    """The request failed."""

    message: str


@dataclass
class StreamErrorWithActions:
    """The request failed and the user can act on it."""

    message: str
    actions: list[EntryAction] = field(default_factory=list)


StreamEvent = (
    StreamStart
    | Chunk
    | ToolResultFor
    | ToolUpdate
    | StreamEnd
    | Response
    | Stopped
    | StreamError
    | StreamErrorWithActions
)


def _content_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def parse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Decode one wire record into an event.

    Returns None for unknown or malformed records; those are logged, never
    raised.
    """
    event_type = payload.get("type")

    try:
        if event_type == "stream-start":
            return StreamStart()

        if event_type == "chunk":
            return Chunk(
                message_type=str(payload["messageType"]),
                content=_content_text(payload.get("content")),
                subtype=payload.get("subtype"),
                metadata=dict(payload.get("metadata") or {}),
            )

        if event_type == "tool-result-for":
            return ToolResultFor(
                tool_use_id=str(payload["toolUseId"]),
                content=_content_text(payload.get("content")),
                is_error=bool(payload.get("isError", False)),
            )

        if event_type == "tool-update":
            return ToolUpdate(
                tool_use_id=str(payload["toolUseId"]),
                tool_input=payload.get("toolInput"),
            )

        if event_type == "stream-end":
            return StreamEnd()

        if event_type == "response":
            return Response(text=_content_text(payload.get("text")))

        if event_type == "stopped":
            return Stopped()

        if event_type == "error":
            return StreamError(message=_content_text(payload.get("message")))

        if event_type == "error-with-actions":
            return StreamErrorWithActions(
                message=_content_text(payload.get("message")),
                actions=[EntryAction.from_dict(a) for a in payload.get("actions") or []],
            )

    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Malformed stream event", type=event_type, error=str(e))
        return None

    logger.warning("Unknown stream event type", type=event_type)
    return None
