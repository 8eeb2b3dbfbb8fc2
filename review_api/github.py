"""GitHub pull request helpers: PR reference extraction and review comments."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from langsmith import traceable

from .constants import (
    DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
    GITHUB_API_BASE,
    GITHUB_USER_AGENT,
    PR_URL_PATTERN,
)
from .errors import UpstreamError
from .schemas import InboundMessage, TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PRInfo:
    owner: str
    repo: str
    pr_number: str

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}/pull/{self.pr_number}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.pr_number}"


def _match_pr(text: str) -> PRInfo | None:
    match = PR_URL_PATTERN.search(text)
    if not match:
        return None
    owner, repo, pr_number = match.groups()
    return PRInfo(owner=owner, repo=repo, pr_number=pr_number)


def extract_pr_info(
    pr_url: str | None = None,
    messages: Sequence[InboundMessage] | None = None,
) -> PRInfo | None:
    """Find the PR a review targets.

    An explicit URL wins; otherwise the first PR URL found in the messages,
    scanned in order.
    """
    if pr_url:
        info = _match_pr(pr_url)
        if info:
            return info

    for message in messages or ():
        info = _match_pr(message.text())
        if info:
            return info
    return None


def format_comment_body(review_text: str, usage: TokenUsage | None = None) -> str:
    body = f"## 🤖 AI Code Review\n\n{review_text}"
    if usage and usage.total_tokens > 0:
        body += (
            f"\n\n---\n**Usage:** {usage.prompt_tokens} prompt + "
            f"{usage.completion_tokens} completion = {usage.total_tokens} tokens"
        )
    return body


def _trace_inputs(inputs: dict) -> dict:
    return {key: value for key, value in inputs.items() if key not in ("github_token", "transport")}


@traceable(run_type="chain", name="github.post_pr_comment", process_inputs=_trace_inputs)
async def post_pr_comment(
    github_token: str,
    pr_info: PRInfo,
    review_text: str,
    usage: TokenUsage | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
) -> None:
    """Create a new issue comment on the pull request. Never retried."""
    body = format_comment_body(review_text, usage)
    path = f"/repos/{pr_info.owner}/{pr_info.repo}/issues/{pr_info.pr_number}/comments"
    logger.info(
        "Posting PR comment",
        extra={"pr": str(pr_info), "comment_length": len(body), "has_token": bool(github_token)},
    )

    try:
        async with httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            headers={
                "Authorization": f"token {github_token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": GITHUB_USER_AGENT,
            },
            timeout=timeout,
            transport=transport,
        ) as client:
            response = await client.post(path, json={"body": body})
    except httpx.HTTPError as e:
        logger.error("PR comment request failed", extra={"pr": str(pr_info), "error": str(e)})
        raise UpstreamError(f"Failed to post PR comment: {e}") from e

    if not response.is_success:
        logger.error(
            "GitHub API error response",
            extra={"pr": str(pr_info), "status": response.status_code, "error_text": response.text},
        )
        raise UpstreamError(
            f"Failed to post PR comment: {response.status_code} {response.reason_phrase}. "
            f"{response.text}",
            upstream_status=response.status_code,
            details=response.text,
        )

    is_json = response.headers.get("content-type", "").startswith("application/json")
    payload = response.json() if is_json else {}
    comment_url = payload.get("html_url") if isinstance(payload, dict) else None
    logger.info("Posted PR comment", extra={"pr": str(pr_info), "comment_url": comment_url})
