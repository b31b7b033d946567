"""
Conversation entries - the aggregated, UI-renderable chat history.

Each entry kind is its own dataclass. The only structural rewrite allowed on
the history is promoting a ``ToolEntry`` into a ``ToolGroupEntry``, which is
done by building a new ``ToolGroupEntry`` value (see ``promote_to_group``).
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterator

import structlog

logger = structlog.get_logger()


class EntryKind(str, Enum):
    """Kinds of conversation entries."""
    USER_INPUT = "user-input"
    ASSISTANT = "assistant"
    TOOL = "tool"
    TOOL_RESULT = "tool-result"
    TOOL_GROUP = "tool-group"
    RESULT = "result"
    ERROR = "error"


@dataclass
class ImageAttachment:
    """An image the user attached to their input."""

    data: str
    mime_type: str = "image/png"
    file_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data, "mime_type": self.mime_type, "file_name": self.file_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageAttachment":
        return cls(
            data=data.get("data") or data.get("image") or "",
            mime_type=data.get("mime_type") or data.get("mimeType") or "image/png",
            file_name=data.get("file_name") or data.get("fileName"),
        )


@dataclass
class EntryAction:
    """A follow-up action offered to the user next to an error."""

    label: str
    command: str
    args: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "command": self.command, "args": self.args}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EntryAction":
        return cls(
            label=data.get("label") or data.get("text") or "",
            command=data["command"],
            args=data.get("args"),
        )


@dataclass
class ToolMeta:
    """State of one tool invocation."""

    tool_id: str
    tool_name: str
    tool_input: Any = field(default_factory=dict)
    parent_tool_id: str | None = None
    tool_result: str | None = None
    result_is_error: bool = False
    result_received: bool = False
    is_loading: bool = True
    estimated_duration_sec: float = 90.0
    started_at: float = 0.0
    elapsed_sec: float = 0.0
    progress_pct: float = 0.0

    def complete(self, content: str, is_error: bool) -> None:
        """Record the tool's result and close its progress."""
        self.tool_result = content
        self.result_is_error = is_error
        self.result_received = True
        self.is_loading = False
        self.progress_pct = 100.0
        self.elapsed_sec = self.estimated_duration_sec

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "tool_input": self.tool_input,
            "parent_tool_id": self.parent_tool_id,
            "tool_result": self.tool_result,
            "result_is_error": self.result_is_error,
            "result_received": self.result_received,
            "is_loading": self.is_loading,
            "estimated_duration_sec": self.estimated_duration_sec,
            "started_at": self.started_at,
            "elapsed_sec": self.elapsed_sec,
            "progress_pct": self.progress_pct,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolMeta":
        meta = cls(
            tool_id=data["tool_id"],
            tool_name=data["tool_name"],
            tool_input=data.get("tool_input", {}),
            parent_tool_id=data.get("parent_tool_id"),
            tool_result=data.get("tool_result"),
            result_is_error=bool(data.get("result_is_error", False)),
            result_received=bool(data.get("result_received", False)),
            is_loading=bool(data.get("is_loading", True)),
            estimated_duration_sec=float(data.get("estimated_duration_sec", 90.0)),
            started_at=float(data.get("started_at", 0.0)),
            elapsed_sec=float(data.get("elapsed_sec", 0.0)),
            progress_pct=float(data.get("progress_pct", 0.0)),
        )
        if meta.result_received:
            meta.is_loading = False
            meta.progress_pct = 100.0
        return meta


@dataclass(kw_only=True)
class ConversationEntry:
    """Base class for one node of the aggregated history."""

    KIND: ClassVar[str] = ""

    text: str = ""
    created_at: float = 0.0
    subtype: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return self.KIND

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "kind": self.kind,
            "text": self.text,
            "created_at": self.created_at,
            "subtype": self.subtype,
            "metadata": self.metadata,
        }

    @classmethod
    def _common_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "text": data.get("text") or "",
            "created_at": float(data.get("created_at", 0.0)),
            "subtype": data.get("subtype"),
            "metadata": dict(data.get("metadata") or {}),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationEntry":
        """Create from dictionary."""
        return cls(**cls._common_fields(data))


@dataclass(kw_only=True)
class UserInputEntry(ConversationEntry):
    """Text (and images) the user submitted."""

    KIND: ClassVar[str] = EntryKind.USER_INPUT.value

    images: list[ImageAttachment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["images"] = [image.to_dict() for image in self.images]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserInputEntry":
        return cls(
            **cls._common_fields(data),
            images=[ImageAttachment.from_dict(i) for i in data.get("images") or []],
        )


@dataclass(kw_only=True)
class AssistantEntry(ConversationEntry):
    """Streamed assistant text."""

    KIND: ClassVar[str] = EntryKind.ASSISTANT.value


@dataclass(kw_only=True)
class ToolResultEntry(ConversationEntry):
    """A standalone result message reported by the agent."""

    KIND: ClassVar[str] = EntryKind.TOOL_RESULT.value


@dataclass(kw_only=True)
class ResultEntry(ConversationEntry):
    """Turn outcome notices: stopped, errors, summaries."""

    KIND: ClassVar[str] = EntryKind.RESULT.value


@dataclass(kw_only=True)
class ErrorEntry(ConversationEntry):
    """An error with follow-up actions for the user."""

    KIND: ClassVar[str] = EntryKind.ERROR.value

    actions: list[EntryAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["actions"] = [action.to_dict() for action in self.actions]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorEntry":
        return cls(
            **cls._common_fields(data),
            actions=[EntryAction.from_dict(a) for a in data.get("actions") or []],
        )


@dataclass(kw_only=True)
class ToolEntry(ConversationEntry):
    """A single tool invocation."""

    KIND: ClassVar[str] = EntryKind.TOOL.value

    tool: ToolMeta

    @property
    def tool_id(self) -> str:
        return self.tool.tool_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["tool"] = self.tool.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolEntry":
        return cls(**cls._common_fields(data), tool=ToolMeta.from_dict(data["tool"]))


@dataclass(kw_only=True)
class ToolGroupEntry(ConversationEntry):
    """Display grouping of tool calls sharing one parent tool id.

    A group never executes; its status is derived from its children.
    """

    KIND: ClassVar[str] = EntryKind.TOOL_GROUP.value

    group_id: str
    children: list[ToolEntry] = field(default_factory=list)

    @property
    def is_loading(self) -> bool:
        return any(child.tool.is_loading for child in self.children)

    @property
    def result_is_error(self) -> bool:
        return any(child.tool.result_is_error for child in self.children)

    @property
    def result_received(self) -> bool:
        return bool(self.children) and all(child.tool.result_received for child in self.children)

    @property
    def tool_name(self) -> str | None:
        return self.children[0].tool.tool_name if self.children else None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["group_id"] = self.group_id
        data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolGroupEntry":
        return cls(
            **cls._common_fields(data),
            group_id=data["group_id"],
            children=[ToolEntry.from_dict(child) for child in data.get("children") or []],
        )


@dataclass(kw_only=True)
class UnknownEntry(ConversationEntry):
    """Entry of a kind this package does not model; kept verbatim."""

    raw_kind: str

    @property
    def kind(self) -> str:
        return self.raw_kind

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnknownEntry":
        return cls(**cls._common_fields(data), raw_kind=str(data.get("kind", "")))


ENTRY_TYPES: dict[str, type[ConversationEntry]] = {
    EntryKind.USER_INPUT.value: UserInputEntry,
    EntryKind.ASSISTANT.value: AssistantEntry,
    EntryKind.TOOL.value: ToolEntry,
    EntryKind.TOOL_RESULT.value: ToolResultEntry,
    EntryKind.TOOL_GROUP.value: ToolGroupEntry,
    EntryKind.RESULT.value: ResultEntry,
    EntryKind.ERROR.value: ErrorEntry,
}


def new_text_entry(
    kind: str,
    text: str = "",
    created_at: float = 0.0,
    subtype: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ConversationEntry:
    """Create a text-bearing entry of the given kind."""
    fields = {
        "text": text,
        "created_at": created_at,
        "subtype": subtype,
        "metadata": dict(metadata or {}),
    }
    entry_type = ENTRY_TYPES.get(kind)
    if entry_type is None:
        return UnknownEntry(raw_kind=kind, **fields)
    if entry_type in (ToolEntry, ToolGroupEntry):
        raise ValueError(f"{kind} entries need tool metadata")
    return entry_type(**fields)


def promote_to_group(tool_entry: ToolEntry, child: ToolEntry, group_id: str) -> ToolGroupEntry:
    """Build the group that replaces a bare tool entry once a child arrives."""
    return ToolGroupEntry(
        text=tool_entry.text,
        created_at=tool_entry.created_at,
        subtype=tool_entry.subtype,
        metadata=dict(tool_entry.metadata),
        group_id=group_id,
        children=[tool_entry, child],
    )


def iter_tools(entries: list[ConversationEntry]) -> Iterator[ToolEntry]:
    """Yield every tool entry, top level first then inside each group."""
    for entry in entries:
        if isinstance(entry, ToolEntry):
            yield entry
        elif isinstance(entry, ToolGroupEntry):
            yield from entry.children


def find_tool(entries: list[ConversationEntry], tool_id: str) -> ToolEntry | None:
    """Find a tool entry by id anywhere in the history."""
    for tool in iter_tools(entries):
        if tool.tool_id == tool_id:
            return tool
    return None


def entry_from_dict(data: dict[str, Any]) -> ConversationEntry:
    """Decode one snapshot entry."""
    kind = data.get("kind")
    entry_type = ENTRY_TYPES.get(kind) if isinstance(kind, str) else None
    if entry_type is None:
        return UnknownEntry.from_dict(data)
    return entry_type.from_dict(data)


def dump_entries(entries: list[ConversationEntry]) -> str:
    """Serialize the history as a JSON snapshot."""
    return json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)


def load_entries(raw: str | None) -> list[ConversationEntry]:
    """Decode a JSON snapshot.

    Missing or corrupt data yields an empty history; a single undecodable
    entry is skipped.
    """
    if not raw:
        return []

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("Corrupt history snapshot, starting empty", error=str(e))
        return []

    if not isinstance(data, list):
        logger.warning("History snapshot is not a list, starting empty", type=type(data).__name__)
        return []

    entries: list[ConversationEntry] = []
    for index, item in enumerate(data):
        try:
            entries.append(entry_from_dict(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping undecodable history entry", index=index, error=str(e))
    return entries
