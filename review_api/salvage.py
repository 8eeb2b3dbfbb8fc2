"""Recover a usable completion from a provider error that still carried one.

Some providers answer with a valid body whose extras (citations, for example)
fail client-side validation. The raw body is attached to the raised error in
one of a few places; this module knows those places and the expected body
shape, and nothing else should.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SalvagedResponse:
    text: str
    input_tokens: int
    output_tokens: int


def _raw_payload(error: BaseException) -> Mapping[str, Any] | None:
    for attribute in ("value", "body"):
        candidate = getattr(error, attribute, None)
        if isinstance(candidate, Mapping):
            return candidate

    response_body = getattr(error, "response_body", None)
    if isinstance(response_body, str):
        try:
            candidate = json.loads(response_body)
        except ValueError:
            logger.warning("Could not parse error response body as JSON")
            return None
        if isinstance(candidate, Mapping):
            return candidate
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _token_count(
    usage: Mapping[str, Any], billed: Mapping[str, Any], snake: str, camel: str
) -> int:
    for value in (usage.get(snake), usage.get(camel), billed.get(snake)):
        if value is not None:
            return int(value)
    return 0


def salvage_response(error: BaseException) -> SalvagedResponse | None:
    payload = _raw_payload(error)
    if payload is None:
        return None

    message = payload.get("message")
    if not isinstance(message, Mapping):
        # Plain error bodies ({"error": ...} or {"message": "..."}) are not completions.
        return None
    content = message.get("content")
    if not isinstance(content, list):
        # A body was attached but not in the expected shape: the provider or
        # SDK changed, and this adapter needs updating.
        logger.error(
            "Error payload does not match the salvageable response shape",
            extra={"error_type": type(error).__name__, "payload_keys": sorted(payload)},
        )
        return None

    text = "".join(
        part.get("text", "")
        for part in content
        if isinstance(part, Mapping) and part.get("type") == "text"
    )
    if not text:
        logger.warning(
            "Salvageable payload carried no text",
            extra={"content_types": [p.get("type") for p in content if isinstance(p, Mapping)]},
        )
        return None

    raw_usage = _mapping(payload.get("usage"))
    usage = _mapping(raw_usage.get("tokens")) or raw_usage
    billed = _mapping(raw_usage.get("billed_units"))
    salvaged = SalvagedResponse(
        text=text,
        input_tokens=_token_count(usage, billed, "input_tokens", "inputTokens"),
        output_tokens=_token_count(usage, billed, "output_tokens", "outputTokens"),
    )
    logger.warning(
        "Recovered response text from provider error",
        extra={
            "error_type": type(error).__name__,
            "text_length": len(salvaged.text),
            "input_tokens": salvaged.input_tokens,
            "output_tokens": salvaged.output_tokens,
        },
    )
    return salvaged
