import json
import unittest
from unittest.mock import AsyncMock, Mock

import httpx

from review_api.billing import BillingResult, CostLedger
from review_api.constants import CHAT_SYSTEM_PROMPT, CODE_REVIEW_MAX_STEPS, CODE_REVIEW_SYSTEM_PROMPT
from review_api.errors import BadRequestError, UpstreamError
from review_api.orchestration.base import GenerationResult
from review_api.schemas import ChatRequest, CodeReviewRequest, PRCommentRequest, TokenUsage
from review_api.services.billing_service import billing_snapshot
from review_api.services.chat_service import ChatService
from review_api.services.review_service import ReviewService, build_review_prompt
from review_api.streaming import encode_event
from review_api.tools import build_code_tools

PR_URL = "https://github.com/acme/widgets/pull/42"


def _result(text: str = "assistant reply") -> GenerationResult:
    return GenerationResult(
        text=text,
        usage=TokenUsage.from_counts(11, 22),
        billing=BillingResult(cost=0.01, running_total=0.05),
        finish_reason="stop",
        steps=1,
    )


class RecordingGitHub:
    """httpx transport capturing comment posts."""

    def __init__(self, status_code: int = 201) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="Bad credentials")
        return httpx.Response(
            self.status_code, json={"id": 1, "html_url": f"{PR_URL}#issuecomment-1"}
        )

    def comment_bodies(self) -> list[str]:
        return [json.loads(request.content)["body"] for request in self.requests]


class ChatServiceTests(unittest.IsolatedAsyncioTestCase):
    async def test_handle_chat_delegates_to_orchestrator_and_maps_response(self) -> None:
        orchestrator = Mock()
        orchestrator.generate = AsyncMock(return_value=_result())
        service = ChatService(orchestrator=orchestrator, tools=build_code_tools())

        response = await service.handle_chat(
            ChatRequest(messages=[{"role": "user", "content": "hello"}], stream=False)
        )

        self.assertEqual(response.text, "assistant reply")
        self.assertEqual(response.usage.total_tokens, 33)
        self.assertEqual(response.billing.running_total, 0.05)

        generation_request = orchestrator.generate.call_args.args[0]
        self.assertEqual(generation_request.system_prompt, CHAT_SYSTEM_PROMPT)
        self.assertIsNone(generation_request.tools)
        self.assertEqual(generation_request.max_steps, 10)
        self.assertTrue(generation_request.enable_usage_metadata)
        self.assertEqual(generation_request.log_prefix, "Chat")

    def test_stream_chat_enables_tools_on_request(self) -> None:
        orchestrator = Mock()
        service = ChatService(orchestrator=orchestrator, tools=build_code_tools())

        service.stream_chat(
            ChatRequest(
                messages=[],
                enable_tools=True,
                system_prompt="Be brief.",
                provider="vercel-ai-gateway",
                fallback_models=["anthropic/claude-sonnet-4"],
            )
        )

        generation_request = orchestrator.stream.call_args.args[0]
        self.assertEqual(
            [tool.name for tool in generation_request.tools], ["readFile", "readPullRequest"]
        )
        self.assertEqual(generation_request.system_prompt, "Be brief.")
        self.assertEqual(generation_request.fallback_models, ["anthropic/claude-sonnet-4"])
        self.assertTrue(generation_request.stream)


class ReviewServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.github = RecordingGitHub()
        self.orchestrator = Mock()
        self.orchestrator.generate = AsyncMock(return_value=_result("Found one bug."))

    def _service(self, github_token: str | None = None) -> ReviewService:
        return ReviewService(
            orchestrator=self.orchestrator,
            tools=build_code_tools(),
            github_token=github_token,
            github_transport=self.github.transport,
        )

    def test_review_prompt_appends_context_file(self) -> None:
        request = CodeReviewRequest(
            messages=[],
            contextFile={"name": "AGENTS.md", "content": "Use tabs.", "hash": "deadbeef"},
        )

        prompt = build_review_prompt(request.system_prompt, request.context_file)

        self.assertTrue(prompt.startswith(CODE_REVIEW_SYSTEM_PROMPT))
        self.assertIn("## Repository Context", prompt)
        self.assertIn("(AGENTS.md)", prompt)
        self.assertIn("Use tabs.", prompt)

    async def test_handle_review_posts_comment_to_pr_from_messages(self) -> None:
        service = self._service()
        request = CodeReviewRequest(
            messages=[{"role": "user", "content": f"Please review {PR_URL}"}],
            stream=False,
            githubToken="ghp_request",
            contextFile={"name": "AGENTS.md", "content": "rules", "hash": "deadbeef"},
        )

        response = await service.handle_review(request)

        self.assertEqual(response.text, "Found one bug.")
        generation_request = self.orchestrator.generate.call_args.args[0]
        self.assertEqual(len(generation_request.tools), 2)
        self.assertEqual(generation_request.max_steps, CODE_REVIEW_MAX_STEPS)
        self.assertEqual(generation_request.context_file_hash, "deadbeef")
        self.assertTrue(generation_request.enable_step_logging)

        self.assertEqual(len(self.github.requests), 1)
        posted = self.github.requests[0]
        self.assertEqual(posted.url.path, "/repos/acme/widgets/issues/42/comments")
        self.assertEqual(posted.headers["Authorization"], "token ghp_request")
        body = self.github.comment_bodies()[0]
        self.assertTrue(body.startswith("## 🤖 AI Code Review\n\nFound one bug."))
        self.assertIn("**Usage:** 11 prompt + 22 completion = 33 tokens", body)

    async def test_handle_review_uses_environment_token_fallback(self) -> None:
        service = self._service(github_token="ghp_env")

        await service.handle_review(CodeReviewRequest(messages=[], stream=False, prUrl=PR_URL))

        self.assertEqual(self.github.requests[0].headers["Authorization"], "token ghp_env")

    async def test_handle_review_without_token_posts_nothing(self) -> None:
        service = self._service()

        await service.handle_review(CodeReviewRequest(messages=[], stream=False, prUrl=PR_URL))

        self.assertEqual(self.github.requests, [])

    async def test_comment_failure_does_not_fail_review(self) -> None:
        self.github = RecordingGitHub(status_code=401)
        service = self._service(github_token="ghp_env")

        with self.assertLogs("review_api.services.review_service", level="ERROR"):
            response = await service.handle_review(
                CodeReviewRequest(messages=[], stream=False, prUrl=PR_URL)
            )

        self.assertEqual(response.text, "Found one bug.")
        self.assertEqual(len(self.github.requests), 1)

    async def test_stream_review_posts_collected_text_after_stream(self) -> None:
        async def events():
            yield encode_event({"type": "start", "messageId": "msg-1"})
            yield encode_event({"type": "text-delta", "textDelta": "Streamed "})
            yield encode_event({"type": "text-delta", "textDelta": "review."})
            yield encode_event(
                {
                    "type": "message-metadata",
                    "metadata": {"usage": {"promptTokens": 3, "completionTokens": 4}},
                }
            )
            yield encode_event({"type": "finish", "finishReason": "stop"})

        self.orchestrator.stream.return_value = events()
        service = self._service(github_token="ghp_env")

        chunks = [
            chunk
            async for chunk in service.stream_review(
                CodeReviewRequest(
                    messages=[{"role": "user", "parts": [{"type": "text", "text": PR_URL}]}]
                )
            )
        ]
        await service.wait_for_background_tasks()

        self.assertEqual(len(chunks), 5)
        self.assertEqual(
            self.github.comment_bodies(),
            [
                "## 🤖 AI Code Review\n\nStreamed review."
                "\n\n---\n**Usage:** 3 prompt + 4 completion = 7 tokens"
            ],
        )

    async def test_stream_review_failed_upstream_posts_nothing(self) -> None:
        async def events():
            yield encode_event({"type": "start", "messageId": "msg-1"})
            yield encode_event({"type": "text-delta", "textDelta": "Half a rev"})
            yield encode_event({"type": "error", "errorText": "AI provider API error: reset"})

        self.orchestrator.stream.return_value = events()
        service = self._service(github_token="ghp_env")

        with self.assertLogs("review_api.services.review_service", level="WARNING"):
            chunks = [
                chunk
                async for chunk in service.stream_review(
                    CodeReviewRequest(messages=[{"role": "user", "content": PR_URL}])
                )
            ]
        await service.wait_for_background_tasks()

        self.assertEqual(len(chunks), 3)
        self.assertEqual(self.github.requests, [])

    async def test_stream_review_without_pr_returns_source_unchanged(self) -> None:
        source = object()
        self.orchestrator.stream.return_value = source
        service = self._service(github_token="ghp_env")

        stream = service.stream_review(
            CodeReviewRequest(messages=[{"role": "user", "content": "no link here"}])
        )

        self.assertIs(stream, source)

    async def test_post_comment_validates_request(self) -> None:
        service = self._service()
        cases = [
            (PRCommentRequest(reviewText="  ", prUrl=PR_URL, githubToken="t"), "reviewText is required"),
            (PRCommentRequest(reviewText="LGTM", prUrl=PR_URL), "GitHub token is required"),
            (
                PRCommentRequest(reviewText="LGTM", prUrl="https://example.com", githubToken="t"),
                "Could not extract PR information",
            ),
        ]
        for request, message in cases:
            with self.subTest(message=message):
                with self.assertRaisesRegex(BadRequestError, message):
                    await service.post_comment(request)
        self.assertEqual(self.github.requests, [])

    async def test_post_comment_uses_header_token(self) -> None:
        service = self._service()

        response = await service.post_comment(
            PRCommentRequest(reviewText="LGTM", prUrl=PR_URL), header_token="ghp_header"
        )

        self.assertTrue(response.success)
        self.assertEqual(response.message, "Comment posted to acme/widgets#42")
        self.assertEqual(self.github.requests[0].headers["Authorization"], "token ghp_header")

    async def test_post_comment_surfaces_github_failure(self) -> None:
        self.github = RecordingGitHub(status_code=403)
        service = self._service()

        with self.assertRaises(UpstreamError) as ctx:
            await service.post_comment(
                PRCommentRequest(reviewText="LGTM", prUrl=PR_URL, githubToken="t")
            )
        self.assertEqual(ctx.exception.upstream_status, 403)


class BillingSnapshotTests(unittest.TestCase):
    def test_snapshot_reflects_ledger(self) -> None:
        ledger = CostLedger(initial_credits=1.0)
        ledger.record_usage("deepseek-chat", 2000, 1000)

        snapshot = billing_snapshot(ledger).model_dump(by_alias=True)

        self.assertEqual(snapshot["usageHistory"][0]["model"], "deepseek-chat")
        self.assertEqual(snapshot["costByModel"]["deepseek-chat"]["tokens"], 3000)
        self.assertAlmostEqual(
            snapshot["credits"]["remaining"], 1.0 - ledger.get_total_cost()
        )


if __name__ == "__main__":
    unittest.main()
