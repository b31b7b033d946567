"""
Conversation history -> normalized model messages.

Conversion rules, applied in history order:
- 'user-input' -> user message with text and image blocks
- 'assistant'  -> assistant message with one text block
- 'tool'       -> assistant tool-call message, plus a tool message with the
                  result once one was received
- 'tool-group' -> the tool rule for each child, in order
- 'tool-result'-> tool message with a tool-result block
- 'result', 'error' -> skipped (UI notices only)

A malformed entry is skipped with a warning; conversion never aborts because
of a single entry.
"""

import json
from dataclasses import dataclass, field

import structlog

from ..chat.entries import ConversationEntry, EntryKind, ToolEntry, ToolGroupEntry
from .base import ContentBlock, ImageBlock, NormalizedMessage, TextBlock, ToolCallBlock, ToolResultBlock

logger = structlog.get_logger()


class EntryConversionError(ValueError):
    """An entry lacks data its conversion requires."""


@dataclass
class ConversionReport:
    """Messages produced from a history, with what was skipped and why."""

    messages: list[NormalizedMessage] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ValidationResult:
    """Diagnostics for a normalized message list."""

    is_valid: bool
    warnings: list[str] = field(default_factory=list)


def convert_entries(entries: list[ConversationEntry]) -> list[NormalizedMessage]:
    """Convert a conversation history to normalized messages."""
    return convert_with_report(entries).messages


def convert_with_report(entries: list[ConversationEntry]) -> ConversionReport:
    """Convert a conversation history, collecting skip warnings."""
    report = ConversionReport()

    for index, entry in enumerate(entries):
        try:
            converted = _convert_entry(entry, index, report)
        except Exception as e:
            message = f"Skipped {getattr(entry, 'kind', '?')} entry at index {index}: {e}"
            report.warnings.append(message)
            logger.warning("Failed to convert chat entry", index=index, error=str(e))
            converted = []

        if not converted:
            report.skipped += 1
        report.messages.extend(converted)

    return report


def _convert_entry(
    entry: ConversationEntry,
    index: int,
    report: ConversionReport,
) -> list[NormalizedMessage]:
    kind = entry.kind

    if kind == EntryKind.USER_INPUT.value:
        return [_convert_user_input(entry, index, report)]

    if kind == EntryKind.ASSISTANT.value:
        if not entry.text.strip():
            # Placeholder from a stream that produced no text
            return []
        return [NormalizedMessage(role="assistant", content=[TextBlock(text=entry.text)])]

    if kind == EntryKind.TOOL.value:
        if not isinstance(entry, ToolEntry):
            raise EntryConversionError("tool entry without tool metadata")
        return _convert_tool(entry)

    if kind == EntryKind.TOOL_GROUP.value:
        if not isinstance(entry, ToolGroupEntry):
            raise EntryConversionError("tool-group entry without children")
        return _convert_group(entry, index, report)

    if kind == EntryKind.TOOL_RESULT.value:
        return [_convert_tool_result(entry)]

    if kind in (EntryKind.RESULT.value, EntryKind.ERROR.value):
        return []

    message = f"Skipped unknown entry kind '{kind}' at index {index}"
    report.warnings.append(message)
    logger.warning("Unknown chat entry kind", kind=kind, index=index)
    return []


def _convert_user_input(
    entry: ConversationEntry,
    index: int,
    report: ConversionReport,
) -> NormalizedMessage:
    images = getattr(entry, "images", None) or []
    blocks: list[ContentBlock] = []

    if entry.text or not images:
        blocks.append(TextBlock(text=entry.text))

    for position, image in enumerate(images):
        if not image.data:
            report.warnings.append(f"Skipped empty image {position} of user input at index {index}")
            logger.warning("User input image without data", index=index, image=position)
            continue
        blocks.append(ImageBlock(image=image.data, mime_type=image.mime_type))

    return NormalizedMessage(role="user", content=blocks)


def _convert_tool(entry: ToolEntry) -> list[NormalizedMessage]:
    tool = entry.tool
    if not tool.tool_id or not tool.tool_name:
        raise EntryConversionError("tool entry missing tool_id or tool_name")

    messages = [
        NormalizedMessage(
            role="assistant",
            content=[ToolCallBlock(
                tool_call_id=tool.tool_id,
                tool_name=tool.tool_name,
                args=tool.tool_input if tool.tool_input is not None else {},
            )],
        )
    ]

    if tool.result_received:
        messages.append(NormalizedMessage(
            role="tool",
            content=[ToolResultBlock(
                tool_call_id=tool.tool_id,
                tool_name=tool.tool_name,
                result=tool.tool_result,
                is_error=tool.result_is_error,
            )],
        ))

    return messages


def _convert_group(
    entry: ToolGroupEntry,
    index: int,
    report: ConversionReport,
) -> list[NormalizedMessage]:
    messages: list[NormalizedMessage] = []
    for position, child in enumerate(entry.children):
        try:
            messages.extend(_convert_tool(child))
        except EntryConversionError as e:
            report.warnings.append(f"Skipped child {position} of tool-group at index {index}: {e}")
            logger.warning("Failed to convert grouped tool", index=index, child=position, error=str(e))
    return messages


def _convert_tool_result(entry: ConversationEntry) -> NormalizedMessage:
    tool_id = entry.metadata.get("tool_id")
    tool_name = entry.metadata.get("tool_name")
    if not tool_id or not tool_name:
        raise EntryConversionError("tool-result entry missing tool_id or tool_name")

    return NormalizedMessage(
        role="tool",
        content=[ToolResultBlock(
            tool_call_id=tool_id,
            tool_name=tool_name,
            result=entry.metadata.get("tool_result") or entry.text,
            is_error=bool(entry.metadata.get("is_error", False)),
        )],
    )


def validate_messages(messages: list[NormalizedMessage]) -> ValidationResult:
    """Check converted messages for shapes most model APIs reject.

    Flags consecutive messages with the same role (system excepted), tool
    calls outside assistant messages and tool results outside tool messages.
    """
    warnings: list[str] = []

    for i in range(1, len(messages)):
        prev, curr = messages[i - 1], messages[i]
        if prev.role == curr.role and curr.role != "system":
            warnings.append(f"Consecutive {curr.role} messages at index {i - 1} and {i}")

    for i, message in enumerate(messages):
        if isinstance(message.content, str):
            continue
        for block in message.content:
            if isinstance(block, ToolCallBlock) and message.role != "assistant":
                warnings.append(f"Tool call found in non-assistant message at index {i}")
            elif isinstance(block, ToolResultBlock) and message.role != "tool":
                warnings.append(f"Tool result found in non-tool message at index {i}")

    return ValidationResult(is_valid=not warnings, warnings=warnings)


def describe_conversion(
    entries: list[ConversationEntry],
    messages: list[NormalizedMessage],
) -> ValidationResult:
    """Log a summary of a conversion and its validation."""
    validation = validate_messages(messages)

    logger.debug(
        "Message conversion",
        entries=len(entries),
        messages=len(messages),
        roles=[m.role for m in messages],
    )

    if validation.is_valid:
        logger.debug("Conversion validation passed")
    else:
        logger.warning("Conversion validation warnings", warnings=validation.warnings)

    return validation


def messages_to_json(messages: list[NormalizedMessage], indent: int | None = None) -> str:
    """Render messages as JSON; equal input gives byte-identical output."""
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False, indent=indent)
