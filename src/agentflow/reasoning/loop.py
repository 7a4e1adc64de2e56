"""Reasoning loop: drive one tool-calling conversation to a final answer.

Conversing -> (ToolInvocation)* -> Done. Each turn sends the whole history
plus the tool schemas. A reply without tool calls ends the loop; otherwise
every call is executed in order and answered with a `tool` message before the
next turn. The loop is unbounded unless `max_turns` is set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from agentflow.market.errors import ParseError, UpstreamUnavailable
from agentflow.market.models import Agent, Task
from agentflow.reasoning.llm import ReasoningService, ToolInvocation
from agentflow.reasoning.tools import ToolSpec, tool_schemas

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an autonomous AI agent operating in the AgentFlow marketplace, \
a ledger-backed task platform where agents are paid for completing tasks.

Your goal is to complete the assigned task thoroughly and accurately.
You have access to a web_search tool to look up current information from the web.

Guidelines:
- Search for relevant, up-to-date information before forming your answer
- Make multiple targeted searches if the task requires it
- Be thorough but concise in your final response
- Structure your output clearly (use bullet points, sections, or numbered lists where appropriate)
- Once you have gathered sufficient information, provide your final answer without calling any more tools"""


@dataclass
class LoopResult:
    result: str
    tool_call_count: int
    messages: list[dict[str, Any]] = field(default_factory=list)


def seed_messages(task: Task) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Task title: {task.title}\n\nTask description:\n{task.description}",
        },
    ]


class ReasoningLoop:
    def __init__(
        self,
        service: ReasoningService,
        registry: dict[str, ToolSpec],
        *,
        max_turns: int | None = None,
    ) -> None:
        self.service = service
        self.registry = registry
        self.max_turns = max_turns
        self._schemas = tool_schemas(registry)

    def run(self, agent: Agent, task: Task) -> LoopResult:
        messages = seed_messages(task)
        tool_call_count = 0
        turns = 0

        while True:
            if self.max_turns is not None and turns >= self.max_turns:
                raise UpstreamUnavailable(
                    f"Reasoning loop stopped after {self.max_turns} turns without an answer"
                )
            turns += 1
            reply = self.service.complete(
                model=agent.model,
                messages=list(messages),
                tools=self._schemas,
                tool_choice="auto",
            )
            messages.append(reply.message)

            if not reply.tool_calls:
                logger.info(
                    "reasoning_loop event=done agent_id=%s task_id=%s turns=%d tool_calls=%d",
                    agent.agent_id,
                    task.task_id,
                    turns,
                    tool_call_count,
                )
                return LoopResult(
                    result=reply.content or "",
                    tool_call_count=tool_call_count,
                    messages=messages,
                )

            # Sequential on purpose: tool results must follow invocation order.
            for invocation in reply.tool_calls:
                output = self._invoke(agent, invocation)
                tool_call_count += 1
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": invocation.invocation_id,
                        "content": output,
                    }
                )

    def _invoke(self, agent: Agent, invocation: ToolInvocation) -> str:
        spec = self.registry.get(invocation.name)
        if spec is None:
            raise ParseError(f"Model requested unknown tool: {invocation.name!r}")

        payload = parse_tool_arguments(spec, invocation)
        logger.debug(
            "reasoning_loop event=tool_call agent=%r tool=%s args=%s",
            agent.name,
            invocation.name,
            payload.model_dump(),
        )
        return spec.fn(payload)


def parse_tool_arguments(spec: ToolSpec, invocation: ToolInvocation) -> Any:
    try:
        raw = json.loads(invocation.arguments)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ParseError(
            f"Arguments for {invocation.name} are not valid JSON: {invocation.arguments!r}"
        ) from exc
    if not isinstance(raw, dict):
        raise ParseError(f"Arguments for {invocation.name} must be a JSON object")
    try:
        return spec.input_model.model_validate(raw)
    except ValidationError as exc:
        raise ParseError(f"Invalid arguments for {invocation.name}: {exc}") from exc
