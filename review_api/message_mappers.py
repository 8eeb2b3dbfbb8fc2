"""Conversion helpers between API messages and LangChain messages."""

import enum
import json
import logging
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import TypeAdapter, ValidationError

from .errors import InvalidInputError
from .schemas import (
    FlatMessage,
    InboundMessage,
    MessagePart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    TransportMessage,
)

logger = logging.getLogger(__name__)


class MessageShape(enum.Enum):
    TRANSPORT = "transport"
    FLAT = "flat"


_TRANSPORT_ADAPTER = TypeAdapter(list[TransportMessage])
_FLAT_ADAPTER = TypeAdapter(list[FlatMessage])


def content_text(content: Any) -> str:
    """Join the text of a LangChain message content (string or list of blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if not isinstance(block, dict) or block.get("type", "text") == "text"
        )
    return ""


def _upgrade_to_parts(raw: Any) -> Any:
    if isinstance(raw, dict) and "parts" not in raw and isinstance(raw.get("content"), str):
        return {**raw, "parts": [{"type": "text", "text": raw["content"]}]}
    return raw


def _downgrade_to_content(raw: Any) -> Any:
    if isinstance(raw, dict) and "content" not in raw and isinstance(raw.get("parts"), list):
        return {**raw, "content": raw["parts"]}
    return raw


def decode_messages(raw_messages: Any, shape: MessageShape) -> list[InboundMessage]:
    """Decode raw request messages once at the boundary."""
    if raw_messages is None or not isinstance(raw_messages, list):
        raise InvalidInputError("Messages are required and must be an array")
    try:
        if shape is MessageShape.TRANSPORT:
            return list(_TRANSPORT_ADAPTER.validate_python([_upgrade_to_parts(m) for m in raw_messages]))
        return list(_FLAT_ADAPTER.validate_python([_downgrade_to_content(m) for m in raw_messages]))
    except ValidationError as e:
        raise InvalidInputError(f"Invalid messages: {e.error_count()} validation error(s)") from e


def _tool_output_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output)


def _parts_to_messages(role: str, parts: list[MessagePart]) -> list[BaseMessage]:
    text = "".join(part.text for part in parts if isinstance(part, TextPart))
    if role == "system":
        return [SystemMessage(content=text)]
    if role == "user":
        return [HumanMessage(content=text)]

    tool_calls = [
        {"name": part.tool_name, "args": part.input, "id": part.tool_call_id, "type": "tool_call"}
        for part in parts
        if isinstance(part, ToolCallPart)
    ]
    messages: list[BaseMessage] = [AIMessage(content=text, tool_calls=tool_calls)]
    for part in parts:
        if isinstance(part, ToolResultPart):
            messages.append(
                ToolMessage(
                    content=_tool_output_text(part.output),
                    tool_call_id=part.tool_call_id,
                    name=part.tool_name,
                )
            )
    return messages


def to_canonical(messages: list[InboundMessage]) -> list[BaseMessage]:
    canonical: list[BaseMessage] = []
    for message in messages:
        parts = message.parts if isinstance(message, TransportMessage) else message.as_parts()
        canonical.extend(_parts_to_messages(message.role, parts))
    return canonical


def _is_sendable(message: BaseMessage) -> bool:
    if isinstance(message, ToolMessage):
        return True
    if isinstance(message, AIMessage) and message.tool_calls:
        return True
    return bool(content_text(message.content).strip())


def filter_sendable(messages: list[BaseMessage], log_prefix: str = "AI") -> list[BaseMessage]:
    """Drop entries with no text, no tool call and no tool result.

    Some backends reject such history entries outright.
    """
    sendable: list[BaseMessage] = []
    for index, message in enumerate(messages):
        if _is_sendable(message):
            sendable.append(message)
        else:
            logger.warning(
                "Filtering out message with no content, tool calls, or tool results",
                extra={"log_prefix": log_prefix, "index": index, "role": message.type},
            )
    return sendable


def normalize(
    raw_messages: Any, shape: MessageShape, log_prefix: str = "AI"
) -> list[BaseMessage]:
    return filter_sendable(to_canonical(decode_messages(raw_messages, shape)), log_prefix)
