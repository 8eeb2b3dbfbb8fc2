"""Runtime infrastructure helpers for settings and tracing."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from langsmith.run_trees import get_cached_client

from review_api.constants import (
    DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_INITIAL_CREDITS_USD,
    DEFAULT_LLM_REQUEST_TIMEOUT_SECONDS,
    GITHUB_TOKEN_ENV_VAR,
    LANGSMITH_PROJECT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSettings:
    app_env: str
    llm_request_timeout_seconds: float
    github_request_timeout_seconds: float
    initial_credits_usd: float
    github_token: str | None
    langsmith_api_key: str | None

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def _float_setting(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Ignoring non-numeric setting; using default",
            extra={"setting": name, "default": default},
        )
        return default


@lru_cache(maxsize=1)
def get_settings() -> RuntimeSettings:
    return RuntimeSettings(
        app_env=os.environ.get("APP_ENV", "production"),
        llm_request_timeout_seconds=_float_setting(
            "LLM_REQUEST_TIMEOUT_SECONDS", DEFAULT_LLM_REQUEST_TIMEOUT_SECONDS
        ),
        github_request_timeout_seconds=_float_setting(
            "GITHUB_REQUEST_TIMEOUT_SECONDS", DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS
        ),
        initial_credits_usd=_float_setting("INITIAL_CREDITS_USD", DEFAULT_INITIAL_CREDITS_USD),
        github_token=os.environ.get(GITHUB_TOKEN_ENV_VAR) or None,
        langsmith_api_key=os.environ.get("LANGSMITH_API_KEY") or None,
    )


def _configure_langsmith(langsmith_api_key: str | None) -> None:
    if not langsmith_api_key:
        os.environ.pop("LANGSMITH_TRACING", None)
        logger.info("LangSmith tracing disabled because API key is unavailable")
        return

    os.environ["LANGSMITH_TRACING"] = "true"
    os.environ.setdefault("LANGSMITH_PROJECT", LANGSMITH_PROJECT)


@lru_cache(maxsize=1)
def ensure_langsmith_configured() -> None:
    """Configure LangSmith environment variables (called once via lru_cache)."""
    _configure_langsmith(get_settings().langsmith_api_key)


def flush_langsmith_traces() -> None:
    if os.environ.get("LANGSMITH_TRACING", "").lower() != "true":
        return
    if not os.environ.get("LANGSMITH_API_KEY"):
        return
    try:
        get_cached_client().flush()
    except Exception:
        logger.warning("Failed to flush LangSmith traces", exc_info=True)
