"""
Chat module - the aggregated conversation history.

Includes:
- StreamAggregator: Reduces agent stream events into conversation entries
- ChatSession: Owns a history, its progress ticker and its durable snapshot
- ProgressTicker: Periodic progress estimates for open tool calls
- translate_agent_message: Raw agent SDK messages to stream events
"""

from .entries import (
    AssistantEntry,
    ConversationEntry,
    EntryAction,
    EntryKind,
    ErrorEntry,
    ImageAttachment,
    ResultEntry,
    ToolEntry,
    ToolGroupEntry,
    ToolMeta,
    ToolResultEntry,
    UnknownEntry,
    UserInputEntry,
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
    parse_event,
)
from .aggregator import StreamAggregator
from .progress import ProgressTicker, estimate_duration
from .store import BaseHistoryStore, InMemoryHistoryStore, SQLHistoryStore, StoreResult
from .session import ChatSession, ChatSessionError
from .translate import failure_event, translate_agent_message

__all__ = [
    "AssistantEntry",
    "ConversationEntry",
    "EntryAction",
    "EntryKind",
    "ErrorEntry",
    "ImageAttachment",
    "ResultEntry",
    "ToolEntry",
    "ToolGroupEntry",
    "ToolMeta",
    "ToolResultEntry",
    "UnknownEntry",
    "UserInputEntry",
    "Chunk",
    "Response",
    "Stopped",
    "StreamEnd",
    "StreamError",
    "StreamErrorWithActions",
    "StreamEvent",
    "StreamStart",
    "ToolResultFor",
    "ToolUpdate",
    "parse_event",
    "StreamAggregator",
    "ProgressTicker",
    "estimate_duration",
    "BaseHistoryStore",
    "InMemoryHistoryStore",
    "SQLHistoryStore",
    "StoreResult",
    "ChatSession",
    "ChatSessionError",
    "failure_event",
    "translate_agent_message",
]
