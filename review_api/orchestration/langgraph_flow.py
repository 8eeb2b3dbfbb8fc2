"""LangGraph step loop: call the model, run requested tools, repeat within a step budget."""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Annotated, Any, NotRequired, TypedDict

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    ToolMessage,
    message_chunk_to_message,
)
from langchain_core.tools import BaseTool
from langgraph.graph import END, START, StateGraph
from langgraph.graph.message import add_messages
from langgraph.types import StreamWriter

from review_api.message_mappers import content_text

logger = logging.getLogger(__name__)


class ToolLoopState(TypedDict):
    messages: Annotated[list[BaseMessage], add_messages]
    steps: int
    input_tokens: int
    output_tokens: int
    first_new_message: NotRequired[int]


class ToolLoopFlow:
    """One request's model/tool loop.

    ``max_steps`` counts model invocations. Tool calls requested in the last
    allowed step are still executed, then the loop stops.
    """

    def __init__(
        self,
        model: Any,
        tools: Sequence[BaseTool] | None = None,
        *,
        max_steps: int | None = None,
        stream: bool = False,
        log_prefix: str = "AI",
        enable_step_logging: bool = False,
    ) -> None:
        self._tools_by_name = {tool.name: tool for tool in tools or ()}
        self._model = model.bind_tools(list(tools)) if tools else model
        self._max_steps = max(max_steps or 1, 1)
        self._stream = stream
        self._log_prefix = log_prefix
        self._enable_step_logging = enable_step_logging

        graph = StateGraph(ToolLoopState)
        graph.add_node("call_model", self._call_model)
        graph.add_node("run_tools", self._run_tools)
        graph.add_edge(START, "call_model")
        graph.add_conditional_edges("call_model", self._route_after_model, ["run_tools", END])
        graph.add_conditional_edges("run_tools", self._route_after_tools, ["call_model", END])
        self._graph = graph.compile()

    @property
    def max_steps(self) -> int:
        return self._max_steps

    def _config(self) -> dict[str, Any]:
        return {
            "recursion_limit": 2 * self._max_steps + 2,
            "run_name": f"{self._log_prefix.lower()}_tool_loop",
            "tags": ["review-api", self._log_prefix],
        }

    def _initial_state(self, messages: list[BaseMessage]) -> ToolLoopState:
        return {
            "messages": messages,
            "steps": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "first_new_message": len(messages),
        }

    async def ainvoke(self, messages: list[BaseMessage]) -> ToolLoopState:
        return await self._graph.ainvoke(self._initial_state(messages), config=self._config())

    def astream(self, messages: list[BaseMessage]) -> AsyncIterator[tuple[str, Any]]:
        """Yield ("custom", event) for wire events and ("values", state) snapshots."""
        return self._graph.astream(
            self._initial_state(messages),
            config=self._config(),
            stream_mode=["custom", "values"],
        )

    async def _stream_model(self, messages: list[BaseMessage], writer: StreamWriter) -> AIMessage:
        aggregate: AIMessageChunk | None = None
        async for chunk in self._model.astream(messages):
            text = content_text(chunk.content)
            if text:
                writer({"type": "text-delta", "textDelta": text})
            aggregate = chunk if aggregate is None else aggregate + chunk
        if aggregate is None:
            return AIMessage(content="")
        return message_chunk_to_message(aggregate)

    async def _call_model(self, state: ToolLoopState, writer: StreamWriter) -> dict[str, Any]:
        if self._stream:
            writer({"type": "start-step"})
            response = await self._stream_model(state["messages"], writer)
        else:
            response = await self._model.ainvoke(state["messages"])

        usage = response.usage_metadata or {}
        if self._stream and not response.tool_calls:
            writer({"type": "finish-step"})
        return {
            "messages": [response],
            "steps": state["steps"] + 1,
            "input_tokens": state["input_tokens"] + usage.get("input_tokens", 0),
            "output_tokens": state["output_tokens"] + usage.get("output_tokens", 0),
        }

    async def _execute_tool(self, call: dict[str, Any], writer: StreamWriter) -> ToolMessage:
        if self._stream:
            writer(
                {
                    "type": "tool-input-available",
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "input": call["args"],
                }
            )

        tool = self._tools_by_name.get(call["name"])
        if tool is None:
            result = ToolMessage(
                content=(
                    f"Error: {call['name']} is not a valid tool, "
                    f"try one of [{', '.join(self._tools_by_name)}]."
                ),
                tool_call_id=call["id"],
                name=call["name"],
                status="error",
            )
        else:
            result = await tool.ainvoke({**call, "type": "tool_call"})

        if self._stream:
            writer(
                {
                    "type": "tool-output-available",
                    "toolCallId": call["id"],
                    "output": result.content,
                }
            )
        return result

    async def _run_tools(self, state: ToolLoopState, writer: StreamWriter) -> dict[str, Any]:
        last = state["messages"][-1]
        calls = list(last.tool_calls) if isinstance(last, AIMessage) else []
        if self._enable_step_logging:
            logger.info(
                "Tool calls made",
                extra={
                    "log_prefix": self._log_prefix,
                    "step": state["steps"],
                    "tools": [call["name"] for call in calls],
                },
            )

        results = await asyncio.gather(*(self._execute_tool(call, writer) for call in calls))

        if self._enable_step_logging:
            logger.info(
                "Tool results received",
                extra={"log_prefix": self._log_prefix, "result_count": len(results)},
            )
        if self._stream:
            writer({"type": "finish-step"})
        return {"messages": list(results)}

    def _route_after_model(self, state: ToolLoopState) -> str:
        last = state["messages"][-1]
        if isinstance(last, AIMessage) and last.tool_calls and self._tools_by_name:
            return "run_tools"
        return END

    def _route_after_tools(self, state: ToolLoopState) -> str:
        if state["steps"] >= self._max_steps:
            logger.warning(
                "Step limit reached with tool calls outstanding",
                extra={"log_prefix": self._log_prefix, "max_steps": self._max_steps},
            )
            return END
        return "call_model"
