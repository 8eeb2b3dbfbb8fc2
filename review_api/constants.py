"""Shared constants and literal types for the review API."""

import re
from typing import Literal

ProviderId = Literal["openai", "gemini", "anthropic", "deepseek", "qwen", "vercel-ai-gateway"]
MessageRole = Literal["user", "assistant", "system"]

DEFAULT_PROVIDER: ProviderId = "openai"
GATEWAY_PROVIDER: ProviderId = "vercel-ai-gateway"

PROVIDER_BASE_URLS: dict[ProviderId, str | None] = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "anthropic": "https://api.anthropic.com/v1/",
    "deepseek": "https://api.deepseek.com/v1",
    "qwen": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "vercel-ai-gateway": "https://ai-gateway.vercel.sh/v1",
}
PROVIDER_API_KEY_ENV_VARS: dict[ProviderId, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GOOGLE_GENERATIVE_AI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "qwen": "QWEN_API_KEY",
    "vercel-ai-gateway": "VERCEL_AI_GATEWAY_API_KEY",
}

CHAT_SYSTEM_PROMPT = "You are a helpful AI assistant."
CODE_REVIEW_SYSTEM_PROMPT = (
    "You are a code reviewer.\n"
    "You will be given a file path and you will review the code in that file."
)
CHAT_MAX_STEPS = 10
CODE_REVIEW_MAX_STEPS = 20

GITHUB_API_BASE = "https://api.github.com"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"
GITHUB_USER_AGENT = "AI-Code-Reviewer"
PR_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)", re.IGNORECASE)
PR_PATCH_MAX_CHARS = 50_000

DEFAULT_INITIAL_CREDITS_USD = 1.0
DEFAULT_LLM_REQUEST_TIMEOUT_SECONDS = 120.0
DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS = 30.0
LANGSMITH_PROJECT = "ai-code-review"
