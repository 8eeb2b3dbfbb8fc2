import json
import tempfile
import unittest
from pathlib import Path

import httpx
from langchain_core.messages import ToolMessage

from review_api.tools import build_code_tools, read_file, read_pull_request

PR_URL = "https://github.com/acme/widgets/pull/7"


def _json_transport(status_code: int, payload: object, seen: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class ReadFileTests(unittest.IsolatedAsyncioTestCase):
    async def test_reads_utf8_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "module.py"
            path.write_text("print('héllo')\n", encoding="utf-8")

            content = await read_file(str(path))

        self.assertEqual(content, "print('héllo')\n")

    async def test_missing_file_becomes_error_text(self) -> None:
        content = await read_file("/definitely/not/here.py")

        self.assertTrue(content.startswith("Error reading file: "))

    async def test_null_byte_in_path_becomes_error_text(self) -> None:
        content = await read_file("a\x00b")

        self.assertTrue(content.startswith("Error reading file: "))


class ReadPullRequestTests(unittest.IsolatedAsyncioTestCase):
    async def test_lists_files_with_truncated_patches(self) -> None:
        seen: list[httpx.Request] = []
        files = [
            {
                "filename": "app.py",
                "status": "modified",
                "additions": 3,
                "deletions": 1,
                "changes": 4,
                "patch": "x" * 60_000,
                "contents_url": "https://api.github.com/repos/acme/widgets/contents/app.py",
            },
            {
                "filename": "README.md",
                "status": "added",
                "additions": 1,
                "deletions": 0,
                "changes": 1,
                "blob_url": "https://github.com/acme/widgets/blob/abc/README.md",
            },
        ]

        result = json.loads(
            await read_pull_request(PR_URL, transport=_json_transport(200, files, seen))
        )

        self.assertEqual(seen[0].url.path, "/repos/acme/widgets/pulls/7/files")
        self.assertNotIn("Authorization", seen[0].headers)
        self.assertEqual(result["owner"], "acme")
        self.assertEqual(result["repo"], "widgets")
        self.assertEqual(result["pr_number"], "7")
        self.assertEqual(result["total_files"], 2)
        self.assertEqual(len(result["files"][0]["patch"]), 50_000)
        self.assertEqual(result["files"][1]["patch"], "")
        self.assertEqual(
            result["files"][1]["raw_url"], "https://github.com/acme/widgets/blob/abc/README.md"
        )

    async def test_invalid_url(self) -> None:
        result = await read_pull_request("https://example.com/not-a-pr")

        self.assertTrue(result.startswith("Error: Invalid GitHub PR URL format."))

    async def test_not_found(self) -> None:
        result = await read_pull_request(
            PR_URL, transport=_json_transport(404, {"message": "Not Found"})
        )

        self.assertEqual(
            result, "Error: PR not found. Make sure the PR is public and the URL is correct."
        )

    async def test_other_error_status(self) -> None:
        result = await read_pull_request(PR_URL, transport=_json_transport(403, {}))

        self.assertEqual(result, "Error fetching PR files: 403 Forbidden")

    async def test_empty_file_list(self) -> None:
        result = await read_pull_request(PR_URL, transport=_json_transport(200, []))

        self.assertEqual(result, "No files found in this pull request.")

    async def test_unexpected_file_entries_do_not_raise(self) -> None:
        payload = ["not a file", {"filename": "a.py", "patch": ["odd"]}]

        result = await read_pull_request(PR_URL, transport=_json_transport(200, payload))

        summary = json.loads(result)
        self.assertEqual(summary["total_files"], 1)
        self.assertEqual(summary["files"][0]["patch"], '["odd"]')

    async def test_non_object_entries_only(self) -> None:
        result = await read_pull_request(PR_URL, transport=_json_transport(200, [1, 2]))

        self.assertEqual(result, "Error fetching PR files: unexpected response format")

    async def test_transport_failure_becomes_error_text(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        result = await read_pull_request(PR_URL, transport=httpx.MockTransport(handler))

        self.assertEqual(result, "Error reading pull request: timed out")


class CodeToolsTests(unittest.IsolatedAsyncioTestCase):
    async def test_tools_are_invocable_by_tool_call(self) -> None:
        tools = {tool.name: tool for tool in build_code_tools(_json_transport(200, []))}

        self.assertEqual(set(tools), {"readFile", "readPullRequest"})
        message = await tools["readPullRequest"].ainvoke(
            {"name": "readPullRequest", "args": {"prUrl": PR_URL}, "id": "call_1", "type": "tool_call"}
        )

        self.assertIsInstance(message, ToolMessage)
        self.assertEqual(message.tool_call_id, "call_1")
        self.assertEqual(message.content, "No files found in this pull request.")

    async def test_invalid_arguments_become_tool_result(self) -> None:
        tools = {tool.name: tool for tool in build_code_tools()}

        message = await tools["readFile"].ainvoke(
            {"name": "readFile", "args": {}, "id": "call_2", "type": "tool_call"}
        )

        self.assertIsInstance(message, ToolMessage)
        self.assertEqual(message.tool_call_id, "call_2")

    async def test_unreadable_path_becomes_tool_result(self) -> None:
        tools = {tool.name: tool for tool in build_code_tools()}

        message = await tools["readFile"].ainvoke(
            {"name": "readFile", "args": {"path": "a\x00b"}, "id": "call_3", "type": "tool_call"}
        )

        self.assertIsInstance(message, ToolMessage)
        self.assertTrue(message.content.startswith("Error reading file: "))


if __name__ == "__main__":
    unittest.main()
