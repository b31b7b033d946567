"""
Stream aggregation - reduces agent stream events into the chat history.

The aggregator owns one ordered list of conversation entries. Events are
applied strictly in arrival order; nothing is reordered or buffered except tool
results that arrive before their tool call (see ``_park_result``).

Nothing here raises on bad input. Correlation misses, malformed tool metadata
and unknown kinds are recorded as warnings and the event is dropped.
"""

import time
from collections import OrderedDict
from typing import Any, Callable

import structlog

from .entries import (
    AssistantEntry,
    ConversationEntry,
    EntryKind,
    ErrorEntry,
    ImageAttachment,
    ResultEntry,
    ToolEntry,
    ToolGroupEntry,
    ToolMeta,
    ToolResultEntry,
    UserInputEntry,
    find_tool,
    iter_tools,
    new_text_entry,
    promote_to_group,
)
from .events import (
    Chunk,
    Response,
    Stopped,
    StreamEnd,
    StreamError,
    StreamErrorWithActions,
    StreamEvent,
    StreamStart,
    ToolResultFor,
    ToolUpdate,
)
from .progress import DEFAULT_DURATION_SEC, estimate_duration

logger = structlog.get_logger()

DEFAULT_STOPPED_NOTICE = "Response stopped by user."
DEFAULT_ORPHAN_RESULT_LIMIT = 32


class StreamAggregator:
    """Applies stream events to a conversation history."""

    def __init__(
        self,
        entries: list[ConversationEntry] | None = None,
        clock: Callable[[], float] = time.time,
        tool_durations: dict[str, float] | None = None,
        default_duration_sec: float = DEFAULT_DURATION_SEC,
        orphan_result_limit: int = DEFAULT_ORPHAN_RESULT_LIMIT,
        stopped_notice: str = DEFAULT_STOPPED_NOTICE,
    ):
        self.entries: list[ConversationEntry] = entries if entries is not None else []
        self.clock = clock
        self.tool_durations = dict(tool_durations or {})
        self.default_duration_sec = default_duration_sec
        self.orphan_result_limit = orphan_result_limit
        self.stopped_notice = stopped_notice

        self.awaiting_response = False
        self.warnings: list[str] = []

        self._open_tools: dict[str, ToolMeta] = {}
        self._parked_results: OrderedDict[str, ToolResultFor] = OrderedDict()
        self._collapse_listeners: list[Callable[[], None]] = []

        self._handlers: dict[type, Callable[[Any], bool]] = {
            StreamStart: self._on_stream_start,
            Chunk: self._on_chunk,
            ToolResultFor: self._on_tool_result,
            ToolUpdate: self._on_tool_update,
            StreamEnd: self._on_stream_end,
            Response: self._on_response,
            Stopped: self._on_stopped,
            StreamError: self._on_error,
            StreamErrorWithActions: self._on_error_with_actions,
        }

        self._reindex_open_tools()

    def _reindex_open_tools(self) -> None:
        self._open_tools = {
            tool.tool_id: tool.tool
            for tool in iter_tools(self.entries)
            if tool.tool.is_loading
        }

    def _warn(self, message: str, **context: Any) -> None:
        self.warnings.append(message)
        logger.warning(message, **context)

    def add_collapse_listener(self, listener: Callable[[], None]) -> None:
        """Register for the "collapse all tools except the most recent" signal."""
        self._collapse_listeners.append(listener)

    def _signal_collapse(self) -> None:
        for listener in self._collapse_listeners:
            try:
                listener()
            except Exception as e:
                logger.error("Collapse listener failed", error=str(e))

    def open_tools(self) -> list[ToolMeta]:
        """Tool calls still waiting for their result."""
        return list(self._open_tools.values())

    @property
    def parked_result_ids(self) -> list[str]:
        """Ids of tool results received before their tool call."""
        return list(self._parked_results)

    def apply(self, event: StreamEvent) -> bool:
        """Apply one event; returns True when the history changed."""
        handler = self._handlers.get(type(event))
        if handler is None:
            self._warn("Ignoring unknown stream event", event_type=type(event).__name__)
            return False
        return handler(event)

    def add_user_input(self, text: str, images: list[ImageAttachment] | None = None) -> UserInputEntry:
        """Append the user's submitted input and wait for the response."""
        entry = UserInputEntry(text=text, created_at=self.clock(), images=list(images or []))
        self.entries.append(entry)
        self.awaiting_response = True
        return entry

    def clear(self) -> None:
        """Drop the whole history."""
        self.entries.clear()
        self._open_tools.clear()
        self._parked_results.clear()
        self.warnings.clear()
        self.awaiting_response = False

    def _on_stream_start(self, event: StreamStart) -> bool:
        self._signal_collapse()
        self.entries.append(AssistantEntry(created_at=self.clock()))
        self.awaiting_response = True
        return True

    def _on_chunk(self, event: Chunk) -> bool:
        if event.message_type == EntryKind.TOOL.value:
            return self._add_tool(event)

        if event.message_type == EntryKind.TOOL_RESULT.value:
            self.entries.append(ToolResultEntry(
                text=event.content,
                created_at=self.clock(),
                subtype=event.subtype,
                metadata=dict(event.metadata),
            ))
            return True

        last = self.entries[-1] if self.entries else None
        if (
            last is not None
            and last.kind == event.message_type
            and not isinstance(last, (ToolEntry, ToolGroupEntry))
        ):
            last.text += event.content
            last.metadata.update(event.metadata)
            if event.subtype is not None:
                last.subtype = event.subtype
            return True

        try:
            entry = new_text_entry(
                event.message_type,
                text=event.content,
                created_at=self.clock(),
                subtype=event.subtype,
                metadata=event.metadata,
            )
        except ValueError as e:
            self._warn("Dropping chunk with unusable kind", kind=event.message_type, error=str(e))
            return False

        if entry.kind not in {kind.value for kind in EntryKind}:
            logger.warning("Keeping chunk of unknown kind", kind=event.message_type)
        self.entries.append(entry)
        return True

    def _add_tool(self, event: Chunk) -> bool:
        metadata = event.metadata
        tool_id = metadata.get("tool_id")
        tool_name = metadata.get("tool_name")

        if not tool_id or not tool_name:
            self._warn(
                "Dropping tool chunk with missing tool_id/tool_name",
                tool_id=tool_id,
                tool_name=tool_name,
            )
            return False

        if find_tool(self.entries, tool_id) is not None:
            self._warn("Dropping tool chunk with duplicate tool_id", tool_id=tool_id)
            return False

        now = self.clock()
        parent_id = metadata.get("parent_tool_use_id") or None
        tool = ToolMeta(
            tool_id=tool_id,
            tool_name=tool_name,
            tool_input=metadata.get("tool_input") or {},
            parent_tool_id=parent_id,
            is_loading=True,
            progress_pct=0.0,
            estimated_duration_sec=estimate_duration(
                tool_name, self.tool_durations, self.default_duration_sec
            ),
            started_at=now,
        )
        entry = ToolEntry(
            text=event.content,
            created_at=now,
            subtype=event.subtype,
            metadata=dict(metadata),
            tool=tool,
        )

        index = self._find_parent_index(parent_id) if parent_id else None
        if index is None:
            self.entries.append(entry)
        else:
            target = self.entries[index]
            if isinstance(target, ToolGroupEntry):
                target.children.append(entry)
            else:
                self.entries[index] = promote_to_group(target, entry, parent_id)
                logger.debug("Promoted tool to group", group_id=parent_id, index=index)

        self._open_tools[tool_id] = tool

        parked = self._parked_results.pop(tool_id, None)
        if parked is not None:
            logger.info("Applying parked tool result", tool_id=tool_id)
            self._complete(entry, parked)

        return True

    def _find_parent_index(self, parent_id: str) -> int | None:
        for index, entry in enumerate(self.entries):
            if isinstance(entry, ToolGroupEntry) and entry.group_id == parent_id:
                return index
            if isinstance(entry, ToolEntry) and entry.tool_id == parent_id:
                return index
        return None

    def _complete(self, entry: ToolEntry, event: ToolResultFor) -> None:
        entry.tool.complete(event.content, event.is_error)
        self._open_tools.pop(entry.tool_id, None)

    def _on_tool_result(self, event: ToolResultFor) -> bool:
        entry = find_tool(self.entries, event.tool_use_id)
        if entry is None:
            self._warn("Tool result matches no known tool call", tool_id=event.tool_use_id)
            self._park_result(event)
            return False

        if entry.tool.result_received:
            logger.debug("Replacing earlier tool result", tool_id=event.tool_use_id)
        self._complete(entry, event)
        return True

    def _park_result(self, event: ToolResultFor) -> None:
        """Hold a result that arrived before its tool call."""
        if self.orphan_result_limit <= 0:
            return
        self._parked_results[event.tool_use_id] = event
        self._parked_results.move_to_end(event.tool_use_id)
        while len(self._parked_results) > self.orphan_result_limit:
            dropped, _ = self._parked_results.popitem(last=False)
            logger.debug("Evicted parked tool result", tool_id=dropped)

    def _on_tool_update(self, event: ToolUpdate) -> bool:
        entry = find_tool(self.entries, event.tool_use_id)
        if entry is None:
            self._warn("Tool update matches no known tool call", tool_id=event.tool_use_id)
            return False
        entry.tool.tool_input = event.tool_input
        return True

    def _on_stream_end(self, event: StreamEnd) -> bool:
        self.awaiting_response = False
        return False

    def _on_response(self, event: Response) -> bool:
        self.awaiting_response = False
        if not event.text:
            return False
        self.entries.append(AssistantEntry(text=event.text, created_at=self.clock()))
        return True

    def _on_stopped(self, event: Stopped) -> bool:
        if not self.awaiting_response:
            logger.debug("Ignoring stop, no response in flight")
            return False

        last = self.entries[-1] if self.entries else None
        if isinstance(last, (AssistantEntry, ResultEntry)) and not last.text.strip():
            self.entries.pop()

        self.entries.append(ResultEntry(
            text=self.stopped_notice,
            created_at=self.clock(),
            subtype="stopped",
        ))
        self.awaiting_response = False
        return True

    def _on_error(self, event: StreamError) -> bool:
        self.entries.append(ResultEntry(
            text=f"Error: {event.message}",
            created_at=self.clock(),
            subtype="error",
            metadata={"is_error": True},
        ))
        self.awaiting_response = False
        return True

    def _on_error_with_actions(self, event: StreamErrorWithActions) -> bool:
        self.entries.append(ErrorEntry(
            text=event.message,
            created_at=self.clock(),
            subtype="error",
            metadata={"is_error": True},
            actions=list(event.actions),
        ))
        self.awaiting_response = False
        return True
