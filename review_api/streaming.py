"""Streaming wire format: event encoding, incremental parsing and relaying.

Two framings are understood by the parser: event-stream blocks
(``data: {...}`` lines separated by a blank line) and prefixed lines
(``0:{...}`` one event per line).
"""

import codecs
import inspect
import json
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from .schemas import TokenUsage

logger = logging.getLogger(__name__)

STREAM_MEDIA_TYPE = "text/event-stream"

_PREFIXED_LINE_PATTERN = re.compile(r"^\d+:(.*)$")
_DATA_PREFIX = "data:"


def encode_event(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


@dataclass(frozen=True)
class StreamParseResult:
    text: str
    usage: TokenUsage | None
    error: str | None = None


class StreamParser:
    """Rebuild response text and usage from a stream, chunk by chunk.

    An ``error`` event is remembered so callers can tell a truncated stream
    from a finished one.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._text = ""
        self._usage: TokenUsage | None = None
        self._error: str | None = None

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk).replace("\r\n", "\n")
        self._drain()

    def finish(self) -> StreamParseResult:
        self._buffer += self._decoder.decode(b"", final=True).replace("\r\n", "\n")
        self._drain()
        if self._buffer.strip():
            self._consume_block(self._buffer)
        self._buffer = ""
        return self.result

    @property
    def result(self) -> StreamParseResult:
        return StreamParseResult(text=self._text, usage=self._usage, error=self._error)

    def _drain(self) -> None:
        if "\n\n" in self._buffer or self._buffer.lstrip().startswith(_DATA_PREFIX):
            *blocks, self._buffer = self._buffer.split("\n\n")
            for block in blocks:
                self._consume_block(block)
        else:
            *lines, self._buffer = self._buffer.split("\n")
            for line in lines:
                self._consume_payload(self._line_payload(line))

    def _consume_block(self, block: str) -> None:
        data_lines: list[str] = []
        for line in block.split("\n"):
            if line.startswith(_DATA_PREFIX):
                data_lines.append(line[len(_DATA_PREFIX):].removeprefix(" "))
            else:
                self._consume_payload(self._line_payload(line))
        if data_lines:
            self._consume_payload("\n".join(data_lines))

    @staticmethod
    def _line_payload(line: str) -> str | None:
        if line.startswith(_DATA_PREFIX):
            return line[len(_DATA_PREFIX):].strip()
        match = _PREFIXED_LINE_PATTERN.match(line.strip())
        return match.group(1) if match else None

    def _consume_payload(self, payload: str | None) -> None:
        if not payload or not payload.strip():
            return
        try:
            data = json.loads(payload)
        except ValueError:
            logger.debug("Skipping malformed stream line", extra={"line": payload[:100]})
            return
        if isinstance(data, dict):
            self._apply(data)

    def _apply(self, data: dict[str, Any]) -> None:
        event_type = data.get("type")
        if event_type == "text-delta":
            delta = data.get("textDelta", data.get("delta"))
            if isinstance(delta, str):
                self._text += delta
        elif event_type == "text" and isinstance(data.get("text"), str) and data["text"]:
            self._text = data["text"]
        elif event_type == "error":
            error_text = data.get("errorText", data.get("error"))
            self._error = error_text if isinstance(error_text, str) and error_text else "error"

        if event_type == "finish" and isinstance(data.get("usage"), dict):
            self._apply_usage(data["usage"])

        for key in ("metadata", "messageMetadata"):
            metadata = data.get(key)
            if isinstance(metadata, dict) and isinstance(metadata.get("usage"), dict):
                self._apply_usage(metadata["usage"])

    def _apply_usage(self, payload: dict[str, Any]) -> None:
        try:
            self._usage = TokenUsage.from_payload(payload)
        except (TypeError, ValueError, OverflowError):
            logger.debug("Skipping unreadable usage payload", extra={"usage": str(payload)[:100]})


CompletionCallback = Callable[[StreamParseResult], Awaitable[None] | None]


async def relay_stream(
    source: AsyncIterator[bytes],
    on_complete: CompletionCallback,
) -> AsyncIterator[bytes]:
    """Forward every chunk unchanged while collecting text and usage.

    ``on_complete`` runs once, after the last chunk was handed on. It does not
    run when the consumer stops early; the source is closed instead. The result
    carries ``error`` when the stream ended with an error event.
    """
    parser = StreamParser()
    parsing = True
    completed = False
    try:
        async for chunk in source:
            yield chunk
            if parsing:
                try:
                    parser.feed(chunk)
                except Exception:
                    # Forwarding continues; the collected result is incomplete.
                    logger.exception("Stream parsing failed, relaying remaining chunks as is")
                    parsing = False
        completed = True
    except Exception:
        logger.exception("Error while relaying stream")
        raise
    finally:
        if not completed:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    if parsing:
        result = parser.finish()
    else:
        result = replace(parser.result, error="Stream parsing failed")
    outcome = on_complete(result)
    if inspect.isawaitable(outcome):
        await outcome
