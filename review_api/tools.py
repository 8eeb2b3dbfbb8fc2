"""Tools the model may call while answering: local file reads and PR file listings.

Every failure path resolves to a string result so the model can react to it.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import httpx
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
    GITHUB_API_BASE,
    PR_PATCH_MAX_CHARS,
    PR_URL_PATTERN,
)

logger = logging.getLogger(__name__)


class ReadFileInput(BaseModel):
    path: str = Field(description="The path to the file to read.")


class ReadPullRequestInput(BaseModel):
    prUrl: str = Field(
        description="The GitHub PR URL (e.g., https://github.com/owner/repo/pull/123)."
    )


async def read_file(path: str) -> str:
    try:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
    except (OSError, ValueError) as e:
        logger.info("readFile tool failed", extra={"path": path, "error": str(e)})
        return f"Error reading file: {e}"


def _summarize_file(file: dict[str, Any]) -> dict[str, Any]:
    content = file.get("patch") or file.get("contents") or ""
    if not isinstance(content, str):
        content = json.dumps(content)
    return {
        "filename": file.get("filename"),
        "status": file.get("status"),
        "additions": file.get("additions"),
        "deletions": file.get("deletions"),
        "changes": file.get("changes"),
        "patch": content[:PR_PATCH_MAX_CHARS],
        "raw_url": file.get("contents_url") or file.get("blob_url"),
    }


async def read_pull_request(
    pr_url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = DEFAULT_GITHUB_REQUEST_TIMEOUT_SECONDS,
) -> str:
    match = PR_URL_PATTERN.search(pr_url)
    if not match:
        return (
            "Error: Invalid GitHub PR URL format. "
            "Expected: https://github.com/owner/repo/pull/123"
        )
    owner, repo, pr_number = match.groups()

    try:
        async with httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            headers={"Accept": "application/vnd.github.v3+json"},
            timeout=timeout,
            transport=transport,
        ) as client:
            response = await client.get(f"/repos/{owner}/{repo}/pulls/{pr_number}/files")
            if response.status_code == 404:
                return "Error: PR not found. Make sure the PR is public and the URL is correct."
            if not response.is_success:
                return f"Error fetching PR files: {response.status_code} {response.reason_phrase}"
            files = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("readPullRequest tool failed", extra={"pr_url": pr_url, "error": str(e)})
        return f"Error reading pull request: {e}"

    if not isinstance(files, list) or not files:
        return "No files found in this pull request."
    files = [file for file in files if isinstance(file, dict)]
    if not files:
        return "Error fetching PR files: unexpected response format"

    return json.dumps(
        {
            "pr_url": pr_url,
            "owner": owner,
            "repo": repo,
            "pr_number": pr_number,
            "total_files": len(files),
            "files": [_summarize_file(file) for file in files],
        },
        indent=2,
    )


def build_code_tools(transport: httpx.AsyncBaseTransport | None = None) -> list[BaseTool]:
    async def _read_pull_request(prUrl: str) -> str:
        return await read_pull_request(prUrl, transport=transport)

    return [
        StructuredTool.from_function(
            coroutine=read_file,
            name="readFile",
            description="Read the content of a file.",
            args_schema=ReadFileInput,
            handle_validation_error=True,
        ),
        StructuredTool.from_function(
            coroutine=_read_pull_request,
            name="readPullRequest",
            description=(
                "Read files from a public GitHub pull request. "
                "Provide the PR URL to fetch all changed files and their contents."
            ),
            args_schema=ReadPullRequestInput,
            handle_validation_error=True,
        ),
    ]
