"""Application service for code review requests and PR comments."""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence

import httpx
from langchain_core.tools import BaseTool

from review_api.constants import (
    CODE_REVIEW_MAX_STEPS,
    CODE_REVIEW_SYSTEM_PROMPT,
    DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
)
from review_api.errors import BadRequestError, UpstreamError
from review_api.github import PRInfo, extract_pr_info, post_pr_comment
from review_api.message_mappers import MessageShape, decode_messages
from review_api.orchestration.base import GenerationRequest
from review_api.orchestration.orchestrator import RequestOrchestrator
from review_api.schemas import (
    CodeReviewRequest,
    ContextFile,
    GenerationResponse,
    PRCommentRequest,
    PRCommentResponse,
    TokenUsage,
)
from review_api.services.chat_service import to_generation_response
from review_api.streaming import StreamParseResult, relay_stream

logger = logging.getLogger(__name__)

LOG_PREFIX = "CodeReview"


def build_review_prompt(system_prompt: str | None, context_file: ContextFile | None) -> str:
    prompt = system_prompt or CODE_REVIEW_SYSTEM_PROMPT
    if context_file:
        prompt += (
            "\n\n## Repository Context\n\n"
            f"The following context file ({context_file.name}) provides additional "
            f"information about this repository:\n\n{context_file.content}\n\n"
            "Use this context to better understand the codebase when reviewing files."
        )
    return prompt


class ReviewService:
    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        tools: Sequence[BaseTool],
        github_token: str | None = None,
        github_timeout: float = DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
        github_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._tools = list(tools)
        self._github_token = github_token
        self._github_timeout = github_timeout
        self._github_transport = github_transport
        self._background_tasks: set[asyncio.Task[None]] = set()

    def _generation_request(self, request: CodeReviewRequest, stream: bool) -> GenerationRequest:
        return GenerationRequest(
            messages=request.messages,
            provider=request.provider,
            model=request.model,
            api_key=request.api_key,
            stream=stream,
            system_prompt=build_review_prompt(request.system_prompt, request.context_file),
            tools=self._tools,
            max_steps=CODE_REVIEW_MAX_STEPS,
            fallback_models=request.fallback_models,
            enable_usage_metadata=True,
            enable_step_logging=True,
            log_prefix=LOG_PREFIX,
            context_file_hash=request.context_file.hash if request.context_file else None,
        )

    def _comment_target(
        self, request: CodeReviewRequest, shape: MessageShape
    ) -> tuple[str, PRInfo] | None:
        github_token = request.github_token or self._github_token
        if not github_token:
            return None
        # Messages were already validated by the orchestrator.
        pr_info = extract_pr_info(request.pr_url, decode_messages(request.messages, shape))
        if pr_info is None:
            logger.warning(
                "GitHub token provided but no PR URL found in request. Comment will not be posted."
            )
            return None
        return github_token, pr_info

    async def _post_review(
        self, github_token: str, pr_info: PRInfo, review_text: str, usage: TokenUsage | None
    ) -> None:
        if not review_text:
            logger.warning(
                "Skipping PR comment post", extra={"pr": str(pr_info), "has_review_text": False}
            )
            return
        try:
            await post_pr_comment(
                github_token,
                pr_info,
                review_text,
                usage,
                transport=self._github_transport,
                timeout=self._github_timeout,
            )
        except UpstreamError:
            # The review itself already succeeded.
            logger.exception(
                "Failed to post PR comment",
                extra={"pr": str(pr_info), "review_text_length": len(review_text)},
            )

    async def handle_review(self, request: CodeReviewRequest) -> GenerationResponse:
        result = await self._orchestrator.generate(self._generation_request(request, stream=False))
        target = self._comment_target(request, MessageShape.FLAT)
        if target is not None:
            github_token, pr_info = target
            await self._post_review(github_token, pr_info, result.text, result.usage)
        return to_generation_response(result)

    def stream_review(self, request: CodeReviewRequest) -> AsyncIterator[bytes]:
        source = self._orchestrator.stream(self._generation_request(request, stream=True))
        target = self._comment_target(request, MessageShape.TRANSPORT)
        if target is None:
            return source

        github_token, pr_info = target

        def on_complete(parsed: StreamParseResult) -> None:
            if parsed.error is not None:
                logger.warning(
                    "Stream ended with an error, PR comment will not be posted",
                    extra={"pr": str(pr_info), "error": parsed.error},
                )
                return
            logger.info(
                "Stream completed, scheduling PR comment",
                extra={"pr": str(pr_info), "text_length": len(parsed.text)},
            )
            task = asyncio.create_task(
                self._post_review(github_token, pr_info, parsed.text, parsed.usage)
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return relay_stream(source, on_complete)

    async def wait_for_background_tasks(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)

    async def post_comment(
        self, request: PRCommentRequest, header_token: str | None = None
    ) -> PRCommentResponse:
        if not request.review_text.strip():
            raise BadRequestError("reviewText is required")
        github_token = request.github_token or header_token
        if not github_token:
            raise BadRequestError("GitHub token is required")
        pr_info = extract_pr_info(request.pr_url)
        if pr_info is None:
            raise BadRequestError("Could not extract PR information from URL")

        await post_pr_comment(
            github_token,
            pr_info,
            request.review_text,
            request.usage,
            transport=self._github_transport,
            timeout=self._github_timeout,
        )
        return PRCommentResponse(success=True, message=f"Comment posted to {pr_info}")
