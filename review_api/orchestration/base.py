"""Inputs and outputs of a single generation request."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from langchain_core.tools import BaseTool

from review_api.billing import BillingResult
from review_api.constants import DEFAULT_PROVIDER
from review_api.schemas import TokenUsage


@dataclass(frozen=True)
class GenerationRequest:
    messages: Any
    provider: str = DEFAULT_PROVIDER
    model: str | None = None
    api_key: str | None = None
    stream: bool = True
    system_prompt: str | None = None
    tools: Sequence[BaseTool] | None = None
    max_steps: int | None = None
    fallback_models: Sequence[str] | None = None
    enable_usage_metadata: bool = False
    enable_step_logging: bool = False
    log_prefix: str = "AI"
    context_file_hash: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    text: str
    usage: TokenUsage
    billing: BillingResult
    finish_reason: str
    steps: int
    exhausted: bool = False
