"""Request orchestration: validate, resolve credentials, run the step loop, account for cost."""

import logging
import os
import time
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass

import httpx
import openai
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from review_api.billing import CostLedger
from review_api.constants import DEFAULT_LLM_REQUEST_TIMEOUT_SECONDS
from review_api.errors import InsufficientCreditsError, MissingCredentialError, UpstreamError
from review_api.message_mappers import MessageShape, content_text, normalize
from review_api.providers.base import ChatModelProvider
from review_api.providers.registry import PROVIDERS, resolve_api_key, resolve_provider
from review_api.salvage import salvage_response
from review_api.schemas import TokenUsage
from review_api.streaming import encode_event

from .base import GenerationRequest, GenerationResult
from .langgraph_flow import ToolLoopFlow, ToolLoopState

logger = logging.getLogger(__name__)

STEP_LIMIT_CAVEAT = (
    "\n\n_Note: the step limit of {max_steps} was reached before the model finished; "
    "this response may be incomplete._"
)
TOOL_CALLS_ONLY_MESSAGE = (
    "The model processed your request and made tool calls, but did not produce a final "
    "answer within the {max_steps}-step limit. Please try using streaming mode for better "
    "tool call handling."
)
TOOL_CALLS_ONLY_STREAM_MESSAGE = (
    "The model made tool calls but did not produce a final answer within the "
    "{max_steps}-step limit."
)
METHOD_NOT_ALLOWED_HINT = (
    ". This usually means:\n"
    "- The API key may be invalid or expired\n"
    "- The model \"{model}\" may not be available for {provider}\n"
    "- For the Vercel AI Gateway: verify the key has gateway access to the requested models\n"
    "- For the Vercel AI Gateway: fallback models use the vendor/model format "
    "(e.g., \"deepseek/deepseek-coder\")"
)


@dataclass(frozen=True)
class _PreparedInvocation:
    request: GenerationRequest
    provider: ChatModelProvider
    model_name: str
    messages: list[BaseMessage]
    flow: ToolLoopFlow
    stream: bool


@dataclass(frozen=True)
class _Outcome:
    body: str
    notice: str
    usage: TokenUsage
    finish_reason: str
    steps: int
    exhausted: bool

    @property
    def text(self) -> str:
        return self.body + self.notice


def classify_upstream_error(error: BaseException, provider_id: str, model: str) -> UpstreamError:
    """Map an exception raised while talking to a provider onto UpstreamError."""
    if isinstance(error, UpstreamError):
        return error
    if isinstance(error, openai.APIStatusError):
        message = f"AI provider API error: {error.message}"
        if error.status_code == 405:
            message += METHOD_NOT_ALLOWED_HINT.format(model=model, provider=provider_id)
        details = str(error.body) if error.body is not None else error.message
        return UpstreamError(message, upstream_status=error.status_code, details=details)
    if isinstance(error, openai.APITimeoutError):
        return UpstreamError(f"AI provider request timed out ({provider_id})")
    if isinstance(error, openai.APIConnectionError):
        return UpstreamError(f"Could not reach AI provider {provider_id}: {error}")
    if isinstance(error, httpx.HTTPError):
        return UpstreamError(f"Transport error talking to {provider_id}: {error}")
    return UpstreamError(f"AI provider request failed: {error}")


class RequestOrchestrator:
    def __init__(
        self,
        ledger: CostLedger,
        providers: Mapping[str, ChatModelProvider] = PROVIDERS,
        environ: Mapping[str, str] = os.environ,
        request_timeout: float | None = DEFAULT_LLM_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._ledger = ledger
        self._providers = providers
        self._environ = environ
        self._request_timeout = request_timeout

    def _prepare(self, request: GenerationRequest, stream: bool) -> _PreparedInvocation:
        if self._ledger.get_remaining_credits() <= 0:
            raise InsufficientCreditsError()

        shape = MessageShape.TRANSPORT if stream else MessageShape.FLAT
        messages = normalize(request.messages, shape, request.log_prefix)
        provider = resolve_provider(request.provider, self._providers)
        model_name = request.model or provider.default_model
        logger.info(
            "Generation request received",
            extra={
                "log_prefix": request.log_prefix,
                "provider": provider.id,
                "model": model_name,
                "stream": stream,
                "message_count": len(messages),
                "has_api_key": bool(request.api_key),
            },
        )

        api_key = resolve_api_key(provider, request.api_key, self._environ)
        if not api_key:
            raise MissingCredentialError(provider.id)
        logger.info(
            "API key resolved",
            extra={
                "log_prefix": request.log_prefix,
                "provider": provider.id,
                "key_source": "request" if request.api_key else "environment",
            },
        )
        if request.context_file_hash:
            logger.info(
                "Context file attached",
                extra={"log_prefix": request.log_prefix, "hash_prefix": request.context_file_hash[:8]},
            )
        if request.fallback_models and not provider.supports_fallback_models:
            logger.warning(
                "Fallback models ignored for provider without gateway routing",
                extra={"log_prefix": request.log_prefix, "provider": provider.id},
            )

        chat_model = provider.create_chat_model(
            api_key,
            model_name,
            fallback_models=request.fallback_models,
            timeout=self._request_timeout,
        )
        if request.system_prompt:
            messages = [SystemMessage(content=request.system_prompt), *messages]
        flow = ToolLoopFlow(
            chat_model,
            request.tools,
            max_steps=request.max_steps,
            stream=stream,
            log_prefix=request.log_prefix,
            enable_step_logging=request.enable_step_logging,
        )
        return _PreparedInvocation(
            request=request,
            provider=provider,
            model_name=model_name,
            messages=messages,
            flow=flow,
            stream=stream,
        )

    def _summarize(self, prepared: _PreparedInvocation, state: ToolLoopState) -> _Outcome:
        new_messages = state["messages"][state.get("first_new_message", 0):]
        ai_messages = [m for m in new_messages if isinstance(m, AIMessage)]
        max_steps = prepared.flow.max_steps

        finish_reason = "stop"
        if ai_messages:
            finish_reason = ai_messages[-1].response_metadata.get("finish_reason") or "stop"
        # The loop only ends on a tool result when the step budget ran out.
        exhausted = bool(new_messages) and isinstance(new_messages[-1], ToolMessage)

        if exhausted:
            body = "\n\n".join(
                text for text in (content_text(m.content).strip() for m in ai_messages) if text
            )
        else:
            body = content_text(ai_messages[-1].content) if ai_messages else ""

        notice = ""
        if exhausted and body:
            notice = STEP_LIMIT_CAVEAT.format(max_steps=max_steps)
        elif not body and (exhausted or finish_reason == "tool_calls"):
            exhausted = True
            template = TOOL_CALLS_ONLY_STREAM_MESSAGE if prepared.stream else TOOL_CALLS_ONLY_MESSAGE
            notice = template.format(max_steps=max_steps)
            logger.warning(
                "Model made tool calls but no final text was generated",
                extra={"log_prefix": prepared.request.log_prefix, "steps": state["steps"]},
            )

        return _Outcome(
            body=body,
            notice=notice,
            usage=TokenUsage.from_counts(state["input_tokens"], state["output_tokens"]),
            finish_reason=finish_reason,
            steps=state["steps"],
            exhausted=exhausted,
        )

    def _classify(self, error: BaseException, prepared: _PreparedInvocation) -> UpstreamError:
        upstream_error = classify_upstream_error(error, prepared.provider.id, prepared.model_name)
        logger.error(
            "AI provider call failed",
            exc_info=error,
            extra={
                "log_prefix": prepared.request.log_prefix,
                "provider": prepared.provider.id,
                "model": prepared.model_name,
                "upstream_status": upstream_error.upstream_status,
                "has_api_key": bool(prepared.request.api_key),
                "has_fallback_models": bool(prepared.request.fallback_models),
            },
        )
        return upstream_error

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run the request to completion and return the assembled text."""
        prepared = self._prepare(request, stream=False)
        start = time.time()
        try:
            state = await prepared.flow.ainvoke(prepared.messages)
        except Exception as e:
            salvaged = salvage_response(e)
            if salvaged is None:
                raise self._classify(e, prepared) from e
            billing = self._ledger.record_usage(
                prepared.model_name, salvaged.input_tokens, salvaged.output_tokens
            )
            return GenerationResult(
                text=salvaged.text,
                usage=TokenUsage.from_counts(salvaged.input_tokens, salvaged.output_tokens),
                billing=billing,
                finish_reason="stop",
                steps=1,
            )

        outcome = self._summarize(prepared, state)
        billing = self._ledger.record_usage(
            prepared.model_name, outcome.usage.prompt_tokens, outcome.usage.completion_tokens
        )
        logger.info(
            "Generation completed",
            extra={
                "log_prefix": request.log_prefix,
                "provider": prepared.provider.id,
                "model": prepared.model_name,
                "duration_ms": int((time.time() - start) * 1000),
                "steps": outcome.steps,
                "finish_reason": outcome.finish_reason,
                "exhausted": outcome.exhausted,
                "usage_prompt_tokens": outcome.usage.prompt_tokens,
                "usage_completion_tokens": outcome.usage.completion_tokens,
                "response_length": len(outcome.text),
            },
        )
        return GenerationResult(
            text=outcome.text,
            usage=outcome.usage,
            billing=billing,
            finish_reason=outcome.finish_reason,
            steps=outcome.steps,
            exhausted=outcome.exhausted,
        )

    def stream(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """Validate eagerly, then return the event stream.

        Validation and credential errors raise here, before any byte is sent.
        """
        prepared = self._prepare(request, stream=True)
        return self._stream_events(prepared)

    async def _stream_events(self, prepared: _PreparedInvocation) -> AsyncIterator[bytes]:
        request = prepared.request
        start = time.time()
        yield encode_event({"type": "start", "messageId": f"msg-{uuid.uuid4().hex}"})

        state: ToolLoopState | None = None
        try:
            async with aclosing(prepared.flow.astream(prepared.messages)) as events:
                async for mode, payload in events:
                    if mode == "custom":
                        yield encode_event(payload)
                    elif mode == "values":
                        state = payload
        except Exception as e:
            upstream_error = self._classify(e, prepared)
            yield encode_event({"type": "error", "errorText": str(upstream_error)})
            return

        if state is None:
            yield encode_event({"type": "error", "errorText": "Stream ended without a result"})
            return

        outcome = self._summarize(prepared, state)
        billing = self._ledger.record_usage(
            prepared.model_name, outcome.usage.prompt_tokens, outcome.usage.completion_tokens
        )
        logger.info(
            "Stream finished",
            extra={
                "log_prefix": request.log_prefix,
                "provider": prepared.provider.id,
                "model": prepared.model_name,
                "duration_ms": int((time.time() - start) * 1000),
                "steps": outcome.steps,
                "finish_reason": outcome.finish_reason,
                "usage_prompt_tokens": outcome.usage.prompt_tokens,
                "usage_completion_tokens": outcome.usage.completion_tokens,
                "cost": billing.cost,
            },
        )

        if outcome.notice:
            yield encode_event({"type": "text-delta", "textDelta": outcome.notice})
        if request.enable_usage_metadata:
            yield encode_event(
                {"type": "message-metadata", "metadata": {"usage": outcome.usage.model_dump(by_alias=True)}}
            )
        yield encode_event({"type": "finish", "finishReason": outcome.finish_reason})
