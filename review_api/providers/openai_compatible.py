"""Providers reached through an OpenAI-compatible chat completions endpoint."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from langchain_openai import ChatOpenAI

from review_api.constants import ProviderId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenAICompatibleProvider:
    id: ProviderId
    api_key_env: str
    default_model: str
    base_url: str | None = None
    supports_fallback_models: bool = False

    def create_chat_model(
        self,
        api_key: str,
        model: str,
        *,
        fallback_models: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> ChatOpenAI:
        params: dict[str, Any] = {
            "model": model,
            "api_key": api_key,
            "stream_usage": True,
        }
        if self.base_url:
            params["base_url"] = self.base_url
        if timeout is not None:
            params["timeout"] = timeout
        if self.supports_fallback_models and fallback_models:
            # The gateway retries the listed models itself when the primary one fails.
            params["extra_body"] = {"providerOptions": {"gateway": {"models": list(fallback_models)}}}
            logger.info(
                "Gateway fallback models attached",
                extra={"provider": self.id, "model": model, "fallback_models": list(fallback_models)},
            )
        return ChatOpenAI(**params)
