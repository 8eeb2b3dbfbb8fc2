"""AI chat and code review API using FastAPI + Mangum for AWS Lambda."""

import logging
import traceback
from collections.abc import Callable
from functools import lru_cache
from typing import Annotated, Any

from fastapi import APIRouter, FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from mangum import Mangum
from starlette.background import BackgroundTask

from review_api.billing import CostLedger
from review_api.errors import ReviewApiError
from review_api.infra.runtime import (
    ensure_langsmith_configured,
    flush_langsmith_traces,
    get_settings,
)
from review_api.orchestration.orchestrator import RequestOrchestrator
from review_api.schemas import (
    BillingSnapshot,
    ChatRequest,
    CodeReviewRequest,
    GenerationResponse,
    PRCommentRequest,
    PRCommentResponse,
    ProviderMetadata,
)
from review_api.services.billing_service import billing_snapshot, list_provider_metadata
from review_api.services.chat_service import ChatService
from review_api.services.review_service import ReviewService
from review_api.streaming import STREAM_MEDIA_TYPE
from review_api.tools import build_code_tools

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

app = FastAPI()
router = APIRouter(prefix="/api")


@lru_cache(maxsize=1)
def get_cost_ledger() -> CostLedger:
    return CostLedger(initial_credits=get_settings().initial_credits_usd)


@lru_cache(maxsize=1)
def get_orchestrator() -> RequestOrchestrator:
    return RequestOrchestrator(
        get_cost_ledger(),
        request_timeout=get_settings().llm_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    return ChatService(orchestrator=get_orchestrator(), tools=build_code_tools())


@lru_cache(maxsize=1)
def get_review_service() -> ReviewService:
    settings = get_settings()
    return ReviewService(
        orchestrator=get_orchestrator(),
        tools=build_code_tools(),
        github_token=settings.github_token,
        github_timeout=settings.github_request_timeout_seconds,
    )


def _http_error(error: Exception, log_prefix: str) -> HTTPException:
    if isinstance(error, ReviewApiError):
        status_code = error.status_code
    else:
        status_code = 502
    if status_code >= 500:
        logger.exception("Request failed", extra={"log_prefix": log_prefix})
    else:
        logger.warning(
            "Request rejected",
            extra={"log_prefix": log_prefix, "status_code": status_code, "error": str(error)},
        )

    detail: Any = str(error)
    if get_settings().is_development:
        detail = {"error": str(error), "stack": traceback.format_exc()}
    return HTTPException(status_code=status_code, detail=detail)


def _event_stream(body: Any, after: Callable[[], Any] | None = None) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type=STREAM_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        background=BackgroundTask(after or flush_langsmith_traces),
    )


async def _finish_review_stream() -> None:
    # Under Mangum the invocation ends with the response, so pending PR comments
    # are awaited here rather than left running.
    try:
        await get_review_service().wait_for_background_tasks()
    finally:
        flush_langsmith_traces()


@router.post("/chat", response_model=None)
async def chat(request: ChatRequest) -> GenerationResponse | StreamingResponse:
    """Answer a chat conversation, streamed or buffered."""
    ensure_langsmith_configured()
    service = get_chat_service()
    if request.stream:
        try:
            body = service.stream_chat(request)
        except Exception as e:
            flush_langsmith_traces()
            raise _http_error(e, "Chat") from e
        return _event_stream(body)

    try:
        return await service.handle_chat(request)
    except Exception as e:
        raise _http_error(e, "Chat") from e
    finally:
        flush_langsmith_traces()


@router.post("/codereview", response_model=None)
async def codereview(request: CodeReviewRequest) -> GenerationResponse | StreamingResponse:
    """Review code with tools enabled; optionally comment the review on a PR."""
    ensure_langsmith_configured()
    service = get_review_service()
    if request.stream:
        try:
            body = service.stream_review(request)
        except Exception as e:
            flush_langsmith_traces()
            raise _http_error(e, "CodeReview") from e
        return _event_stream(body, after=_finish_review_stream)

    try:
        return await service.handle_review(request)
    except Exception as e:
        raise _http_error(e, "CodeReview") from e
    finally:
        flush_langsmith_traces()


@router.get("/billing", response_model=BillingSnapshot)
def billing() -> BillingSnapshot:
    """Return accumulated cost, usage history and remaining credits."""
    return billing_snapshot(get_cost_ledger())


@router.post("/github/pr-comment", response_model=PRCommentResponse)
async def pr_comment(
    request: PRCommentRequest,
    x_github_token: Annotated[str | None, Header()] = None,
) -> PRCommentResponse:
    """Post an already generated review as a PR comment."""
    ensure_langsmith_configured()
    try:
        return await get_review_service().post_comment(request, x_github_token)
    except Exception as e:
        raise _http_error(e, "GitHub PR Comment") from e
    finally:
        flush_langsmith_traces()


@router.get("/models", response_model=list[ProviderMetadata])
def list_models() -> list[ProviderMetadata]:
    """Return providers with their model catalog and fallback support."""
    return list_provider_metadata()


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(router)


handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
