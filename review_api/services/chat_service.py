"""Application service for chat requests."""

import logging
from collections.abc import AsyncIterator, Sequence

from langchain_core.tools import BaseTool

from review_api.constants import CHAT_MAX_STEPS, CHAT_SYSTEM_PROMPT
from review_api.orchestration.base import GenerationRequest, GenerationResult
from review_api.orchestration.orchestrator import RequestOrchestrator
from review_api.schemas import BillingInfo, ChatRequest, GenerationResponse

logger = logging.getLogger(__name__)

LOG_PREFIX = "Chat"


def to_generation_response(result: GenerationResult) -> GenerationResponse:
    return GenerationResponse(
        text=result.text,
        usage=result.usage,
        billing=BillingInfo(cost=result.billing.cost, running_total=result.billing.running_total),
    )


class ChatService:
    def __init__(self, orchestrator: RequestOrchestrator, tools: Sequence[BaseTool]) -> None:
        self._orchestrator = orchestrator
        self._tools = list(tools)

    def _generation_request(self, request: ChatRequest, stream: bool) -> GenerationRequest:
        return GenerationRequest(
            messages=request.messages,
            provider=request.provider,
            model=request.model,
            api_key=request.api_key,
            stream=stream,
            system_prompt=request.system_prompt or CHAT_SYSTEM_PROMPT,
            tools=self._tools if request.enable_tools else None,
            max_steps=CHAT_MAX_STEPS,
            fallback_models=request.fallback_models,
            enable_usage_metadata=True,
            log_prefix=LOG_PREFIX,
        )

    async def handle_chat(self, request: ChatRequest) -> GenerationResponse:
        logger.info(
            "Chat request received",
            extra={"provider": request.provider, "enable_tools": request.enable_tools},
        )
        result = await self._orchestrator.generate(self._generation_request(request, stream=False))
        return to_generation_response(result)

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[bytes]:
        logger.info(
            "Chat stream requested",
            extra={"provider": request.provider, "enable_tools": request.enable_tools},
        )
        return self._orchestrator.stream(self._generation_request(request, stream=True))
