"""Provider registry and API key resolution."""

import os
from collections.abc import Mapping

from review_api.constants import (
    GATEWAY_PROVIDER,
    PROVIDER_API_KEY_ENV_VARS,
    PROVIDER_BASE_URLS,
    ProviderId,
)
from review_api.errors import InvalidProviderError
from review_api.model_registry import MODEL_CATALOG

from .base import ChatModelProvider
from .openai_compatible import OpenAICompatibleProvider

PROVIDERS: dict[str, ChatModelProvider] = {
    provider_id: OpenAICompatibleProvider(
        id=provider_id,
        api_key_env=PROVIDER_API_KEY_ENV_VARS[provider_id],
        default_model=MODEL_CATALOG[provider_id].default_model,
        base_url=base_url,
        supports_fallback_models=provider_id == GATEWAY_PROVIDER,
    )
    for provider_id, base_url in PROVIDER_BASE_URLS.items()
}


def resolve_provider(
    provider_id: str, providers: Mapping[str, ChatModelProvider] = PROVIDERS
) -> ChatModelProvider:
    provider = providers.get(provider_id)
    if provider is None:
        raise InvalidProviderError(provider_id)
    return provider


def get_env_api_key(
    provider_id: ProviderId, environ: Mapping[str, str] = os.environ
) -> str | None:
    return environ.get(PROVIDER_API_KEY_ENV_VARS[provider_id]) or None


def resolve_api_key(
    provider: ChatModelProvider,
    explicit_key: str | None = None,
    environ: Mapping[str, str] = os.environ,
) -> str | None:
    """Return the request key, else the provider's own environment variable.

    Never consults another provider's variable.
    """
    if explicit_key:
        return explicit_key
    return environ.get(provider.api_key_env) or None
