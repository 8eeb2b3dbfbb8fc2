import unittest

from langchain_openai import ChatOpenAI

from review_api.constants import PROVIDER_API_KEY_ENV_VARS
from review_api.errors import InvalidProviderError
from review_api.model_registry import (
    MODEL_CATALOG,
    MODEL_PRICING,
    get_default_model,
    get_model_info,
    get_models_for_provider,
)
from review_api.providers.registry import (
    PROVIDERS,
    get_env_api_key,
    resolve_api_key,
    resolve_provider,
)


class ProviderRegistryTests(unittest.TestCase):
    def test_every_provider_is_registered(self) -> None:
        self.assertEqual(set(PROVIDERS), set(PROVIDER_API_KEY_ENV_VARS))
        for provider_id, provider in PROVIDERS.items():
            with self.subTest(provider=provider_id):
                self.assertEqual(provider.id, provider_id)
                self.assertEqual(provider.default_model, get_default_model(provider_id))

    def test_only_gateway_supports_fallback_models(self) -> None:
        supporting = [p.id for p in PROVIDERS.values() if p.supports_fallback_models]

        self.assertEqual(supporting, ["vercel-ai-gateway"])

    def test_resolve_unknown_provider(self) -> None:
        with self.assertRaisesRegex(InvalidProviderError, "Invalid provider: llama"):
            resolve_provider("llama")

    def test_explicit_key_wins(self) -> None:
        provider = resolve_provider("gemini")

        key = resolve_api_key(
            provider, "from-request", environ={"GOOGLE_GENERATIVE_AI_API_KEY": "from-env"}
        )

        self.assertEqual(key, "from-request")

    def test_environment_key_of_same_provider_only(self) -> None:
        provider = resolve_provider("anthropic")
        environ = {"OPENAI_API_KEY": "sk-openai"}

        self.assertIsNone(resolve_api_key(provider, None, environ=environ))
        self.assertEqual(
            resolve_api_key(provider, "", environ={"ANTHROPIC_API_KEY": "sk-ant"}), "sk-ant"
        )

    def test_get_env_api_key(self) -> None:
        self.assertEqual(get_env_api_key("qwen", {"QWEN_API_KEY": "q"}), "q")
        self.assertIsNone(get_env_api_key("qwen", {"QWEN_API_KEY": ""}))


class ChatModelFactoryTests(unittest.TestCase):
    def test_compatible_provider_targets_its_base_url(self) -> None:
        model = resolve_provider("deepseek").create_chat_model("sk-test", "deepseek-chat", timeout=7)

        self.assertIsInstance(model, ChatOpenAI)
        self.assertEqual(model.model_name, "deepseek-chat")
        self.assertEqual(model.openai_api_base, "https://api.deepseek.com/v1")
        self.assertEqual(model.request_timeout, 7)
        self.assertTrue(model.stream_usage)

    def test_gateway_attaches_fallback_models(self) -> None:
        model = resolve_provider("vercel-ai-gateway").create_chat_model(
            "sk-test", "openai/gpt-4o", fallback_models=["anthropic/claude-sonnet-4"]
        )

        self.assertEqual(
            model.extra_body,
            {"providerOptions": {"gateway": {"models": ["anthropic/claude-sonnet-4"]}}},
        )

    def test_fallback_models_ignored_elsewhere(self) -> None:
        model = resolve_provider("openai").create_chat_model(
            "sk-test", "gpt-4o", fallback_models=["gpt-4o-mini"]
        )

        self.assertIsNone(model.extra_body)


class ModelRegistryTests(unittest.TestCase):
    def test_default_models_are_in_catalog(self) -> None:
        for provider_id, entry in MODEL_CATALOG.items():
            with self.subTest(provider=provider_id):
                self.assertIsNotNone(get_model_info(provider_id, entry.default_model))

    def test_unknown_provider_has_no_models(self) -> None:
        self.assertEqual(get_models_for_provider("unknown"), [])
        self.assertEqual(get_default_model("unknown"), "")
        self.assertIsNone(get_model_info("openai", "gpt-2"))

    def test_direct_catalog_models_are_priced(self) -> None:
        for provider_id in ("openai", "gemini", "anthropic", "deepseek", "qwen"):
            for model in get_models_for_provider(provider_id):
                with self.subTest(model=model.id):
                    self.assertIn(model.id, MODEL_PRICING)


if __name__ == "__main__":
    unittest.main()
