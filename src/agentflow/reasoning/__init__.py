"""Reasoning loop engine and its external collaborators."""

from agentflow.reasoning.llm import (
    ChatReply,
    OpenAIChatCompletionsAdapter,
    ReasoningService,
    ToolInvocation,
)
from agentflow.reasoning.loop import LoopResult, ReasoningLoop
from agentflow.reasoning.search import SearchResult, SearchService, TavilySearchAdapter
from agentflow.reasoning.tools import ToolSpec, build_tool_registry

__all__ = [
    "ChatReply",
    "LoopResult",
    "OpenAIChatCompletionsAdapter",
    "ReasoningLoop",
    "ReasoningService",
    "SearchResult",
    "SearchService",
    "TavilySearchAdapter",
    "ToolInvocation",
    "ToolSpec",
    "build_tool_registry",
]
