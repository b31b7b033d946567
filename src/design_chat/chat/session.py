"""
Chat session - owns one conversation history for its lifetime.

Load on open, persist after every mutation, discard on close. Event
application and progress ticks run on the same event loop and never
interleave; snapshot writes happen in a background flush task whose failures
are logged and otherwise ignored.
"""

import asyncio
import time
from typing import Any, Callable

import structlog

from ..config import Settings, get_settings
from ..llm.base import NormalizedMessage
from .aggregator import StreamAggregator
from .entries import ConversationEntry, ImageAttachment, UserInputEntry
from .events import StreamEvent, parse_event
from .progress import ProgressTicker
from .store import BaseHistoryStore, InMemoryHistoryStore, SQLHistoryStore

logger = structlog.get_logger()


class ChatSessionError(Exception):
    """Raised when a session is used in a way its state does not allow."""


class ChatSession:
    """A chat history bound to one session key and one durable store."""

    def __init__(
        self,
        session_key: str,
        store: BaseHistoryStore | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
        on_collapse_tools: Callable[[], None] | None = None,
        start_ticker: bool = True,
    ):
        self.session_key = session_key
        self.settings = settings or get_settings()
        self.store = store or SQLHistoryStore(self.settings.database_url)
        self.clock = clock
        self.on_collapse_tools = on_collapse_tools
        self.start_ticker = start_ticker

        self.aggregator: StreamAggregator | None = None
        self.ticker: ProgressTicker | None = None
        self._dirty = False
        self._flush_task: asyncio.Task | None = None

    @classmethod
    def in_memory(cls, session_key: str = "default", **kwargs: Any) -> "ChatSession":
        """Create a session backed by a process-local store."""
        return cls(session_key, store=InMemoryHistoryStore(), **kwargs)

    @property
    def is_open(self) -> bool:
        return self.aggregator is not None

    @property
    def entries(self) -> list[ConversationEntry]:
        return self._require_open().entries

    @property
    def awaiting_response(self) -> bool:
        return self._require_open().awaiting_response

    @property
    def warnings(self) -> list[str]:
        return self._require_open().warnings

    def _require_open(self) -> StreamAggregator:
        if self.aggregator is None:
            raise ChatSessionError(f"Session {self.session_key} is not open")
        return self.aggregator

    async def open(self) -> "ChatSession":
        """Load the stored history and start the progress ticker."""
        if self.aggregator is not None:
            return self

        result = await self.store.load(self.session_key)
        if not result.success:
            logger.warning(
                "Could not load history, starting empty",
                session_key=self.session_key,
                error=result.error,
            )

        self.aggregator = StreamAggregator(
            entries=result.entries,
            clock=self.clock,
            tool_durations=self.settings.tool_durations,
            default_duration_sec=self.settings.default_tool_duration_sec,
            orphan_result_limit=self.settings.orphan_result_limit,
            stopped_notice=self.settings.stopped_notice,
        )
        if self.on_collapse_tools:
            self.aggregator.add_collapse_listener(self.on_collapse_tools)

        self.ticker = ProgressTicker(
            open_tools=self.aggregator.open_tools,
            interval_sec=self.settings.progress_interval_sec,
            cap_pct=self.settings.progress_cap_pct,
            clock=self.clock,
            on_tick=lambda _updated: self._schedule_save(),
        )
        if self.start_ticker:
            self.ticker.start()

        logger.info(
            "Chat session opened",
            session_key=self.session_key,
            entries=len(self.aggregator.entries),
        )
        return self

    async def close(self) -> None:
        """Stop the ticker, write the final snapshot and drop the history."""
        if self.aggregator is None:
            return

        if self.ticker:
            await self.ticker.stop()
            self.ticker = None

        await self.flush()
        await self.store.close()

        self.aggregator = None
        logger.info("Chat session closed", session_key=self.session_key)

    async def __aenter__(self) -> "ChatSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def apply(self, event: StreamEvent) -> bool:
        """Apply one stream event; returns True when the history changed."""
        changed = self._require_open().apply(event)
        if changed:
            self._schedule_save()
        return changed

    def apply_payload(self, payload: dict[str, Any]) -> bool:
        """Decode and apply one wire record from the transport."""
        event = parse_event(payload)
        if event is None:
            return False
        return self.apply(event)

    def submit(self, text: str, images: list[ImageAttachment] | None = None) -> UserInputEntry:
        """Record user input that is about to be sent to the agent."""
        aggregator = self._require_open()
        text = text.strip()

        if not text and not images:
            raise ChatSessionError("Cannot submit empty input")
        if aggregator.awaiting_response:
            raise ChatSessionError("A response is still in progress")

        entry = aggregator.add_user_input(text, images)
        self._schedule_save()
        return entry

    def tick(self, now: float | None = None) -> int:
        """Refresh progress of open tools once."""
        self._require_open()
        if self.ticker is None:
            return 0
        return self.ticker.tick(now)

    def build_model_messages(self) -> list[NormalizedMessage]:
        """Convert the current history into messages for the model API."""
        from ..llm.converter import convert_entries, describe_conversion

        entries = self.entries
        messages = convert_entries(entries)
        describe_conversion(entries, messages)
        return messages

    async def clear(self) -> None:
        """Clear the history and its stored snapshot."""
        aggregator = self._require_open()
        aggregator.clear()
        self._dirty = False

        if self._flush_task and not self._flush_task.done():
            await self._flush_task

        result = await self.store.delete(self.session_key)
        if not result.success:
            logger.warning("Could not delete history snapshot", session_key=self.session_key)
        logger.info("Chat history cleared", session_key=self.session_key)

        # Events applied while clearing must outlive the delete
        if aggregator.entries and self.settings.persist_enabled:
            self._dirty = True
            await self.flush()

    def _schedule_save(self) -> None:
        if not self.settings.persist_enabled:
            return

        self._dirty = True
        if self._flush_task is not None and not self._flush_task.done():
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next flush() writes the snapshot
            return
        self._flush_task = loop.create_task(self._flush_loop())

    async def _flush_loop(self) -> None:
        while self._dirty and self.aggregator is not None:
            self._dirty = False
            result = await self.store.save(self.session_key, self.aggregator.entries)
            if not result.success:
                logger.warning(
                    "History snapshot not saved",
                    session_key=self.session_key,
                    error=result.error,
                )

    async def flush(self) -> None:
        """Wait until the latest history is written."""
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        if self._dirty:
            await self._flush_loop()
