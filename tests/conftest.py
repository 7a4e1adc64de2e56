from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from agentflow.api.main import create_app
from agentflow.config import Settings
from agentflow.ledger import InMemoryLedgerClient, LedgerGateway, RetryPolicy
from agentflow.market.agents import AgentRegistry
from agentflow.market.coordinator import AssignmentCoordinator
from agentflow.market.tasks import TaskLifecycle
from agentflow.reasoning import ReasoningLoop, SearchResult, build_tool_registry
from agentflow.reasoning.llm import ChatReply, parse_chat_reply
from agentflow.storage import InMemoryMarketplaceStorage


class ScriptedReasoningService:
    """Test double that replays queued replies and records every request."""

    def __init__(self) -> None:
        self.replies: list[ChatReply | Exception] = []
        self.calls: list[dict[str, Any]] = []

    def answer(self, content: str) -> None:
        self.replies.append(
            ChatReply(message={"role": "assistant", "content": content}, content=content)
        )

    def call_tools(self, *calls: tuple[str, str, str]) -> None:
        raw_calls = [
            {
                "id": invocation_id,
                "type": "function",
                "function": {"name": name, "arguments": arguments},
            }
            for invocation_id, name, arguments in calls
        ]
        self.replies.append(
            parse_chat_reply(
                {
                    "choices": [
                        {"message": {"role": "assistant", "content": None, "tool_calls": raw_calls}}
                    ]
                }
            )
        )

    def fail(self, exc: Exception) -> None:
        self.replies.append(exc)

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ChatReply:
        self.calls.append(
            {
                "model": model,
                "messages": copy.deepcopy(messages),
                "tools": tools,
                "tool_choice": tool_choice,
            }
        )
        if not self.replies:
            raise AssertionError("ScriptedReasoningService has no reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeSearchService:
    def __init__(self) -> None:
        self.results: list[SearchResult] = []
        self.queries: list[dict[str, Any]] = []

    def search(self, query: str, *, max_results: int = 5, depth: str = "basic") -> list[SearchResult]:
        self.queries.append({"query": query, "max_results": max_results, "depth": depth})
        return list(self.results)


def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def storage() -> InMemoryMarketplaceStorage:
    return InMemoryMarketplaceStorage()


@pytest.fixture
def ledger_client() -> InMemoryLedgerClient:
    return InMemoryLedgerClient(operator_id="0.0.2")


@pytest.fixture
def gateway(ledger_client: InMemoryLedgerClient) -> LedgerGateway:
    ledger = LedgerGateway(
        ledger_client,
        retry_policy=RetryPolicy(max_attempts=3, backoff_s=0.0),
        sleep=no_sleep,
    )
    ledger.initialize()
    return ledger


@pytest.fixture
def lifecycle(storage: InMemoryMarketplaceStorage, gateway: LedgerGateway) -> TaskLifecycle:
    return TaskLifecycle(storage, gateway)


@pytest.fixture
def registry(storage: InMemoryMarketplaceStorage) -> AgentRegistry:
    return AgentRegistry(storage)


@pytest.fixture
def reasoning_service() -> ScriptedReasoningService:
    return ScriptedReasoningService()


@pytest.fixture
def search_service() -> FakeSearchService:
    return FakeSearchService()


@pytest.fixture
def reasoning_loop(
    reasoning_service: ScriptedReasoningService, search_service: FakeSearchService
) -> ReasoningLoop:
    return ReasoningLoop(reasoning_service, build_tool_registry(search_service))


@pytest.fixture
def coordinator(
    lifecycle: TaskLifecycle, registry: AgentRegistry, reasoning_loop: ReasoningLoop
) -> AssignmentCoordinator:
    return AssignmentCoordinator(tasks=lifecycle, agents=registry, reasoning=reasoning_loop)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="",
        api_tokens="",
        ledger_backend="memory",
        ledger_marketplace_log_id="",
        ledger_backoff_s=0.0,
        require_payment_settlement=False,
        openai_api_key="",
        tavily_api_key="",
    )


@pytest.fixture
def client(
    storage: InMemoryMarketplaceStorage,
    ledger_client: InMemoryLedgerClient,
    reasoning_service: ScriptedReasoningService,
    search_service: FakeSearchService,
    settings: Settings,
) -> Iterator[TestClient]:
    app = create_app(
        storage=storage,
        ledger_client=ledger_client,
        reasoning_service=reasoning_service,
        search_service=search_service,
        settings_override=settings,
    )
    with TestClient(app) as test_client:
        yield test_client
