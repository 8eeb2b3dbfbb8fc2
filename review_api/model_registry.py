"""Model catalog and token pricing registry."""

from dataclasses import dataclass

from .constants import ProviderId


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    description: str


@dataclass(frozen=True)
class ProviderModels:
    default_model: str
    models: tuple[ModelInfo, ...]


MODEL_CATALOG: dict[ProviderId, ProviderModels] = {
    "openai": ProviderModels(
        default_model="gpt-4o",
        models=(
            ModelInfo("gpt-4o", "GPT-4o", "Flagship multimodal model"),
            ModelInfo("gpt-4o-mini", "GPT-4o mini", "Fast, inexpensive small model"),
            ModelInfo("gpt-4.1", "GPT-4.1", "Strong coding and long-context model"),
            ModelInfo("gpt-4.1-mini", "GPT-4.1 mini", "Balanced cost and quality"),
            ModelInfo("o4-mini", "o4-mini", "Compact reasoning model"),
        ),
    ),
    "gemini": ProviderModels(
        default_model="gemini-1.5-pro",
        models=(
            ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", "Long-context reasoning"),
            ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", "Low-latency general model"),
            ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", "Next generation flash model"),
        ),
    ),
    "anthropic": ProviderModels(
        default_model="claude-sonnet-4-20250514",
        models=(
            ModelInfo("claude-sonnet-4-20250514", "Claude Sonnet 4", "Balanced Claude model"),
            ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "Fastest Claude model"),
        ),
    ),
    "deepseek": ProviderModels(
        default_model="deepseek-chat",
        models=(
            ModelInfo("deepseek-chat", "DeepSeek Chat", "General chat model"),
            ModelInfo("deepseek-reasoner", "DeepSeek Reasoner", "Reasoning model"),
        ),
    ),
    "qwen": ProviderModels(
        default_model="qwen-plus",
        models=(
            ModelInfo("qwen-plus", "Qwen Plus", "Balanced Qwen model"),
            ModelInfo("qwen-max", "Qwen Max", "Most capable Qwen model"),
            ModelInfo("qwen-turbo", "Qwen Turbo", "Fast, inexpensive Qwen model"),
        ),
    ),
    "vercel-ai-gateway": ProviderModels(
        default_model="openai/gpt-4o",
        models=(
            ModelInfo("openai/gpt-4o", "GPT-4o (gateway)", "OpenAI GPT-4o via the gateway"),
            ModelInfo(
                "anthropic/claude-sonnet-4",
                "Claude Sonnet 4 (gateway)",
                "Anthropic Claude Sonnet 4 via the gateway",
            ),
            ModelInfo(
                "deepseek/deepseek-coder",
                "DeepSeek Coder (gateway)",
                "DeepSeek coding model via the gateway",
            ),
        ),
    ),
}

# USD per 1M tokens (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (5.00, 15.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "o4-mini": (1.10, 4.40),
    "gemini-1.5-pro": (1.25, 5.00),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-2.0-flash": (0.10, 0.40),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-sonnet-4": (3.00, 15.00),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
    "deepseek-chat": (0.27, 1.10),
    "deepseek-reasoner": (0.55, 2.19),
    "deepseek-coder": (0.27, 1.10),
    "qwen-plus": (0.40, 1.20),
    "qwen-max": (1.60, 6.40),
    "qwen-turbo": (0.05, 0.20),
}
DEFAULT_PRICING_MODEL = "gpt-4o"


def get_models_for_provider(provider_id: str) -> list[ModelInfo]:
    entry = MODEL_CATALOG.get(provider_id)  # type: ignore[call-overload]
    return list(entry.models) if entry else []


def get_default_model(provider_id: str) -> str:
    entry = MODEL_CATALOG.get(provider_id)  # type: ignore[call-overload]
    return entry.default_model if entry else ""


def get_model_info(provider_id: str, model_id: str) -> ModelInfo | None:
    return next(
        (model for model in get_models_for_provider(provider_id) if model.id == model_id),
        None,
    )
