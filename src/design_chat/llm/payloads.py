"""
Provider request shapes for normalized messages.

Renders ``NormalizedMessage`` lists into the ``messages`` payloads of the
Anthropic Messages API and the OpenAI Chat Completions API.
"""

import json
from typing import Any

from .base import ImageBlock, NormalizedMessage, TextBlock, ToolCallBlock, ToolResultBlock


def _result_text(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False)


def to_anthropic_messages(messages: list[NormalizedMessage]) -> list[dict[str, Any]]:
    """Convert normalized messages to Anthropic format.

    Tool results travel in user turns, and adjacent turns of the same role are
    merged because the API requires alternating roles.
    """
    converted: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            continue

        role = "user" if msg.role == "tool" else msg.role
        content: list[dict[str, Any]] = []

        for block in msg.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    content.append({"type": "text", "text": block.text})
            elif isinstance(block, ImageBlock):
                content.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": block.mime_type,
                        "data": block.image,
                    },
                })
            elif isinstance(block, ToolCallBlock):
                content.append({
                    "type": "tool_use",
                    "id": block.tool_call_id,
                    "name": block.tool_name,
                    "input": block.args if isinstance(block.args, dict) else {"value": block.args},
                })
            elif isinstance(block, ToolResultBlock):
                content.append({
                    "type": "tool_result",
                    "tool_use_id": block.tool_call_id,
                    "content": _result_text(block.result),
                    "is_error": block.is_error,
                })

        if not content:
            continue

        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(content)
        else:
            converted.append({"role": role, "content": content})

    return converted


def extract_system_prompt(messages: list[NormalizedMessage]) -> str | None:
    """Extract system prompt from messages."""
    for msg in messages:
        if msg.role == "system":
            return msg.text
    return None


def to_openai_messages(messages: list[NormalizedMessage]) -> list[dict[str, Any]]:
    """Convert normalized messages to OpenAI format."""
    converted: list[dict[str, Any]] = []

    for msg in messages:
        blocks = msg.blocks

        if msg.role == "tool":
            for block in blocks:
                if isinstance(block, ToolResultBlock):
                    converted.append({
                        "role": "tool",
                        "tool_call_id": block.tool_call_id,
                        "content": _result_text(block.result),
                    })
            continue

        tool_calls = [
            {
                "id": block.tool_call_id,
                "type": "function",
                "function": {
                    "name": block.tool_name,
                    "arguments": json.dumps(block.args, ensure_ascii=False),
                },
            }
            for block in blocks
            if isinstance(block, ToolCallBlock)
        ]

        if msg.role == "assistant" and tool_calls:
            converted.append({
                "role": "assistant",
                "content": msg.text or None,
                "tool_calls": tool_calls,
            })
        elif msg.role == "user" and any(isinstance(b, ImageBlock) for b in blocks):
            parts: list[dict[str, Any]] = []
            for block in blocks:
                if isinstance(block, TextBlock) and block.text:
                    parts.append({"type": "text", "text": block.text})
                elif isinstance(block, ImageBlock):
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": f"data:{block.mime_type};base64,{block.image}"},
                    })
            converted.append({"role": "user", "content": parts})
        else:
            converted.append({
                "role": msg.role,
                "content": msg.text,
            })

    return converted
