"""Pydantic schemas for the review API."""

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

from .constants import DEFAULT_PROVIDER, MessageRole


def _first_count(payload: Mapping[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return int(value)
    return None


class TokenUsage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt_tokens: int = Field(default=0, alias="promptTokens")
    completion_tokens: int = Field(default=0, alias="completionTokens")
    total_tokens: int = Field(default=0, alias="totalTokens")

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> "TokenUsage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TokenUsage":
        """Normalize promptTokens/completionTokens and inputTokens/outputTokens payloads."""
        prompt_tokens = _first_count(payload, "promptTokens", "inputTokens") or 0
        completion_tokens = _first_count(payload, "completionTokens", "outputTokens") or 0
        total_tokens = _first_count(payload, "totalTokens")
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
        )


class TextPart(BaseModel):
    type: Literal["text"]
    text: str = ""


class ToolCallPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["tool-call"]
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["tool-result"]
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str | None = Field(default=None, alias="toolName")
    output: Any = None


class OpaquePart(BaseModel):
    """Any other part type (reasoning, step markers, files); kept but not sent upstream."""

    model_config = ConfigDict(extra="allow")

    type: str


_TAGGED_PART_TYPES = {"text", "tool-call", "tool-result"}


def _part_tag(value: Any) -> str:
    part_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return part_type if part_type in _TAGGED_PART_TYPES else "other"


MessagePart = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[ToolCallPart, Tag("tool-call")],
        Annotated[ToolResultPart, Tag("tool-result")],
        Annotated[OpaquePart, Tag("other")],
    ],
    Discriminator(_part_tag),
]


def _join_text(parts: list[MessagePart]) -> str:
    return "".join(part.text for part in parts if isinstance(part, TextPart))


class TransportMessage(BaseModel):
    """Message as exchanged by streaming clients: an ordered list of typed parts."""

    id: str | None = None
    role: MessageRole
    parts: list[MessagePart] = Field(default_factory=list)

    def text(self) -> str:
        return _join_text(self.parts)


class FlatMessage(BaseModel):
    """Message as sent in buffered request bodies: role plus content."""

    role: MessageRole
    content: str | list[MessagePart] | None = None

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return _join_text(self.content or [])

    def as_parts(self) -> list[MessagePart]:
        if isinstance(self.content, str):
            return [TextPart(type="text", text=self.content)]
        return list(self.content or [])


InboundMessage = TransportMessage | FlatMessage


class GenerationRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validated by the orchestrator so that a missing list maps to a 400.
    messages: Any = None
    provider: str = DEFAULT_PROVIDER
    model: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    stream: bool = True
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    fallback_models: list[str] | None = Field(default=None, alias="fallbackModels")


class ChatRequest(GenerationRequestBody):
    enable_tools: bool = Field(default=False, alias="enableTools")


class ContextFile(BaseModel):
    name: str
    content: str
    hash: str


class CodeReviewRequest(GenerationRequestBody):
    context_file: ContextFile | None = Field(default=None, alias="contextFile")
    github_token: str | None = Field(default=None, alias="githubToken")
    pr_url: str | None = Field(default=None, alias="prUrl")


class BillingInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cost: float
    running_total: float = Field(alias="runningTotal")


class GenerationResponse(BaseModel):
    text: str
    usage: TokenUsage
    billing: BillingInfo


class UsageRecordModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    model: str
    input_tokens: int = Field(alias="inputTokens")
    output_tokens: int = Field(alias="outputTokens")
    total_tokens: int = Field(alias="totalTokens")
    cost: float


class ModelCostModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cost: float
    tokens: int
    call_count: int = Field(alias="callCount")


class CreditsInfo(BaseModel):
    initial: float
    remaining: float


class BillingSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_cost: float = Field(alias="totalCost")
    usage_history: list[UsageRecordModel] = Field(alias="usageHistory")
    cost_by_model: dict[str, ModelCostModel] = Field(alias="costByModel")
    credits: CreditsInfo


class PRCommentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    review_text: str = Field(default="", alias="reviewText")
    usage: TokenUsage | None = None
    pr_url: str | None = Field(default=None, alias="prUrl")
    github_token: str | None = Field(default=None, alias="githubToken")


class PRCommentResponse(BaseModel):
    success: bool
    message: str


class ModelMetadata(BaseModel):
    id: str
    name: str
    description: str


class ProviderMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    default_model: str = Field(alias="defaultModel")
    supports_fallback_models: bool = Field(alias="supportsFallbackModels")
    has_server_key: bool = Field(default=False, alias="hasServerKey")
    models: list[ModelMetadata]
