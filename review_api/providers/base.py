"""Provider interface shared by the registry and the orchestrator."""

from collections.abc import Sequence
from typing import Any, Protocol


class ChatModelProvider(Protocol):
    id: str
    api_key_env: str
    default_model: str
    supports_fallback_models: bool

    def create_chat_model(
        self,
        api_key: str,
        model: str,
        *,
        fallback_models: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Build a LangChain chat model bound to this provider and key."""
        ...
