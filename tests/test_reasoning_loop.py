from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from agentflow.market.errors import ParseError, UpstreamUnavailable
from agentflow.market.models import Agent, Task
from agentflow.reasoning import ReasoningLoop, SearchResult, build_tool_registry
from agentflow.reasoning.loop import SYSTEM_PROMPT
from agentflow.reasoning.search import NO_RESULTS, format_search_results
from agentflow.reasoning.tools import tool_schemas

NOW = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def agent() -> Agent:
    return Agent(
        agent_id="agent-1",
        name="Scout",
        payout_account_id="0.0.500",
        model="gpt-4o-mini",
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def task() -> Task:
    return Task(
        task_id="task-1",
        title="Weather in Lisbon",
        description="What is the weather forecast for Lisbon tomorrow?",
        budget=Decimal("1"),
        creator_id="0.0.1",
        created_at=NOW,
        updated_at=NOW,
    )


def test_answer_without_tools(reasoning_loop: ReasoningLoop, reasoning_service, agent, task) -> None:
    reasoning_service.answer("Sunny.")

    outcome = reasoning_loop.run(agent, task)

    assert outcome.result == "Sunny."
    assert outcome.tool_call_count == 0
    assert len(reasoning_service.calls) == 1
    call = reasoning_service.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["tool_choice"] == "auto"
    assert call["messages"] == [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                "Task title: Weather in Lisbon\n\nTask description:\n"
                "What is the weather forecast for Lisbon tomorrow?"
            ),
        },
    ]
    assert [tool["function"]["name"] for tool in call["tools"]] == ["web_search"]


def test_search_round_trip_builds_history(
    reasoning_loop: ReasoningLoop, reasoning_service, search_service, agent, task
) -> None:
    search_service.results = [
        SearchResult(title="IPMA", url="https://ipma.pt", content="Clear skies, 24C."),
        SearchResult(title="BBC", url="https://bbc.co.uk/weather", content="Sunny."),
    ]
    reasoning_service.call_tools(("call_a", "web_search", '{"query": "Lisbon forecast"}'))
    reasoning_service.answer("Clear skies, around 24C.")

    outcome = reasoning_loop.run(agent, task)

    assert outcome.result == "Clear skies, around 24C."
    assert outcome.tool_call_count == 1
    assert search_service.queries == [
        {"query": "Lisbon forecast", "max_results": 5, "depth": "basic"}
    ]

    second_turn = reasoning_service.calls[1]["messages"]
    assert len(second_turn) == 4
    assistant, tool_message = second_turn[2], second_turn[3]
    assert assistant["role"] == "assistant"
    assert assistant["tool_calls"][0]["id"] == "call_a"
    assert tool_message == {
        "role": "tool",
        "tool_call_id": "call_a",
        "content": (
            "**IPMA**\nhttps://ipma.pt\nClear skies, 24C."
            "\n\n---\n\n"
            "**BBC**\nhttps://bbc.co.uk/weather\nSunny."
        ),
    }
    assert outcome.messages[-1] == {"role": "assistant", "content": "Clear skies, around 24C."}


def test_multiple_tool_calls_in_one_turn_run_in_order(
    reasoning_loop: ReasoningLoop, reasoning_service, search_service, agent, task
) -> None:
    reasoning_service.call_tools(
        ("c1", "web_search", '{"query": "first"}'),
        ("c2", "web_search", '{"query": "second"}'),
    )
    reasoning_service.answer("done")

    outcome = reasoning_loop.run(agent, task)

    assert outcome.tool_call_count == 2
    assert [query["query"] for query in search_service.queries] == ["first", "second"]
    tool_ids = [
        message["tool_call_id"]
        for message in reasoning_service.calls[1]["messages"]
        if message["role"] == "tool"
    ]
    assert tool_ids == ["c1", "c2"]


def test_empty_search_results_are_reported_verbatim(
    reasoning_loop: ReasoningLoop, reasoning_service, agent, task
) -> None:
    reasoning_service.call_tools(("c1", "web_search", '{"query": "nothing"}'))
    reasoning_service.answer("I found nothing.")

    reasoning_loop.run(agent, task)

    tool_message = reasoning_service.calls[1]["messages"][-1]
    assert tool_message["content"] == "No results found."
    assert format_search_results([]) == NO_RESULTS


@pytest.mark.parametrize(
    "arguments",
    ["not json", "[1, 2]", '{"q": "wrong key"}', '{"query": 42}'],
)
def test_malformed_tool_arguments_raise_parse_error(
    reasoning_loop: ReasoningLoop, reasoning_service, search_service, agent, task, arguments
) -> None:
    reasoning_service.call_tools(("c1", "web_search", arguments))

    with pytest.raises(ParseError):
        reasoning_loop.run(agent, task)
    assert search_service.queries == []


def test_unknown_tool_raises_parse_error(
    reasoning_loop: ReasoningLoop, reasoning_service, agent, task
) -> None:
    reasoning_service.call_tools(("c1", "code_exec", '{"query": "x"}'))

    with pytest.raises(ParseError, match="unknown tool"):
        reasoning_loop.run(agent, task)


def test_service_failure_propagates(reasoning_loop: ReasoningLoop, reasoning_service, agent, task) -> None:
    reasoning_service.fail(UpstreamUnavailable("rate limited"))

    with pytest.raises(UpstreamUnavailable, match="rate limited"):
        reasoning_loop.run(agent, task)


def test_max_turns_stops_a_looping_model(reasoning_service, search_service, agent, task) -> None:
    loop = ReasoningLoop(reasoning_service, build_tool_registry(search_service), max_turns=2)
    reasoning_service.call_tools(("c1", "web_search", '{"query": "a"}'))
    reasoning_service.call_tools(("c2", "web_search", '{"query": "b"}'))
    reasoning_service.answer("never reached")

    with pytest.raises(UpstreamUnavailable, match="2 turns"):
        loop.run(agent, task)
    assert len(reasoning_service.calls) == 2


def test_tool_schema_shape(search_service) -> None:
    schemas = tool_schemas(build_tool_registry(search_service))

    assert schemas == [
        {
            "type": "function",
            "function": {
                "name": "web_search",
                "description": (
                    "Search the web for up-to-date information. "
                    "Use targeted queries for best results."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "The search query"}
                    },
                    "required": ["query"],
                },
            },
        }
    ]
