"""Tool registry exposed to the reasoning service."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agentflow.reasoning.search import SearchService, format_search_results

SEARCH_MAX_RESULTS = 5


class WebSearchInput(BaseModel):
    model_config = ConfigDict(strict=True)

    query: str = Field(description="The search query")


@dataclass(frozen=True)
class ToolSpec:
    description: str
    input_model: type[BaseModel]
    fn: Callable[[BaseModel], str]


def build_tool_registry(search: SearchService) -> dict[str, ToolSpec]:
    def web_search(payload: WebSearchInput) -> str:
        results = search.search(payload.query, max_results=SEARCH_MAX_RESULTS, depth="basic")
        return format_search_results(results[:SEARCH_MAX_RESULTS])

    return {
        "web_search": ToolSpec(
            description=(
                "Search the web for up-to-date information. "
                "Use targeted queries for best results."
            ),
            input_model=WebSearchInput,
            fn=web_search,
        ),
    }


def tool_schemas(registry: dict[str, ToolSpec]) -> list[dict[str, Any]]:
    """Render the registry as chat-completions `tools` entries."""
    schemas: list[dict[str, Any]] = []
    for name, spec in registry.items():
        parameters = spec.input_model.model_json_schema()
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        schemas.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": spec.description,
                    "parameters": parameters,
                },
            }
        )
    return schemas
