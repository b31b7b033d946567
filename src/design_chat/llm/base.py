"""
Normalized chat messages for language-model APIs.
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class TextBlock:
    """Plain text content."""

    text: str
    type: Literal["text"] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ImageBlock:
    """Base64 image content."""

    image: str
    mime_type: str = "image/png"
    type: Literal["image"] = "image"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "image": self.image, "mimeType": self.mime_type}


@dataclass
class ToolCallBlock:
    """A tool call made by the assistant."""

    tool_call_id: str
    tool_name: str
    args: Any = field(default_factory=dict)
    type: Literal["tool-call"] = "tool-call"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass
class ToolResultBlock:
    """The output of a tool call."""

    tool_call_id: str
    tool_name: str
    result: Any = None
    is_error: bool = False
    type: Literal["tool-result"] = "tool-result"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
            "isError": self.is_error,
        }


ContentBlock = TextBlock | ImageBlock | ToolCallBlock | ToolResultBlock


@dataclass
class NormalizedMessage:
    """A message in the role/content shape chat APIs expect."""

    role: Literal["user", "assistant", "tool", "system"]
    content: str | list[ContentBlock]

    @property
    def blocks(self) -> list[ContentBlock]:
        """Content as a block list, wrapping plain strings."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)]
        return list(self.content)

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(block.text for block in self.blocks if isinstance(block, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [block.to_dict() for block in self.content]}
