"""
LLM module - normalized messages for model APIs.

Includes:
- NormalizedMessage and its content blocks
- convert_entries / validate_messages: History to model messages
- to_anthropic_messages / to_openai_messages: Provider request shapes
"""

from .base import ContentBlock, ImageBlock, NormalizedMessage, TextBlock, ToolCallBlock, ToolResultBlock
from .converter import (
    ConversionReport,
    ValidationResult,
    convert_entries,
    convert_with_report,
    describe_conversion,
    messages_to_json,
    validate_messages,
)
from .payloads import extract_system_prompt, to_anthropic_messages, to_openai_messages

__all__ = [
    "ContentBlock",
    "ImageBlock",
    "NormalizedMessage",
    "TextBlock",
    "ToolCallBlock",
    "ToolResultBlock",
    "ConversionReport",
    "ValidationResult",
    "convert_entries",
    "convert_with_report",
    "describe_conversion",
    "messages_to_json",
    "validate_messages",
    "extract_system_prompt",
    "to_anthropic_messages",
    "to_openai_messages",
]
