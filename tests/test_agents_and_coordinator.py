from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any

import pytest

from agentflow.ledger import InMemoryLedgerClient
from agentflow.market.agents import AgentRegistry
from agentflow.market.coordinator import AssignmentCoordinator
from agentflow.market.errors import (
    ConfigurationError,
    NotFound,
    StateConflict,
    UpstreamUnavailable,
)
from agentflow.market.models import AgentStatus, TaskStatus
from agentflow.market.tasks import TaskLifecycle
from agentflow.reasoning import ReasoningLoop, SearchResult, build_tool_registry
from agentflow.reasoning.llm import ChatReply


def _agent(registry: AgentRegistry, **overrides):
    fields = {"name": "Researcher", "payout_account_id": "0.0.4242"}
    fields.update(overrides)
    return registry.create(**fields)


def _task(lifecycle: TaskLifecycle):
    return lifecycle.create(
        title="Ledger fee comparison",
        description="Compare transaction fees of three public ledgers.",
        budget=Decimal("5"),
        creator_id="0.0.1",
    ).task


def test_register_agent_defaults(registry: AgentRegistry) -> None:
    agent = _agent(registry)

    assert agent.status == AgentStatus.IDLE
    assert agent.completed_count == 0
    assert agent.model == "gpt-4o"
    assert registry.get(agent.agent_id) == agent
    assert [listed.agent_id for listed in registry.list_agents()] == [agent.agent_id]


def test_register_agent_with_explicit_model(registry: AgentRegistry) -> None:
    agent = _agent(registry, model="gpt-4o-mini", description="Finds things")

    assert agent.model == "gpt-4o-mini"
    assert agent.description == "Finds things"


def test_unknown_agent_raises_not_found(registry: AgentRegistry) -> None:
    with pytest.raises(NotFound):
        registry.get("nope")


def test_claim_twice_conflicts(registry: AgentRegistry) -> None:
    agent = _agent(registry)
    assert registry.claim(agent.agent_id).status == AgentStatus.BUSY

    with pytest.raises(StateConflict):
        registry.claim(agent.agent_id)

    assert registry.release(agent.agent_id).status == AgentStatus.IDLE
    with pytest.raises(StateConflict):
        registry.release(agent.agent_id)


def test_set_status_rejects_illegal_expected_state(registry: AgentRegistry) -> None:
    agent = _agent(registry)

    with pytest.raises(StateConflict):
        registry.set_status(agent.agent_id, AgentStatus.IDLE, expected=AgentStatus.IDLE)


def test_record_completion_requires_busy(registry: AgentRegistry) -> None:
    agent = _agent(registry)

    with pytest.raises(StateConflict):
        registry.record_completion(agent.agent_id)

    registry.claim(agent.agent_id)
    finished = registry.record_completion(agent.agent_id)
    assert finished.status == AgentStatus.IDLE
    assert finished.completed_count == 1


def test_run_completes_task_and_pays_agent(
    coordinator: AssignmentCoordinator,
    registry: AgentRegistry,
    lifecycle: TaskLifecycle,
    reasoning_service,
    search_service,
    ledger_client: InMemoryLedgerClient,
) -> None:
    agent = _agent(registry)
    task = _task(lifecycle)
    search_service.results = [
        SearchResult(title="Fees", url="https://example.org/fees", content="Low fees.")
    ]
    reasoning_service.call_tools(("call_1", "web_search", '{"query": "ledger fees"}'))
    reasoning_service.answer("Ledger A is cheapest.")

    outcome = coordinator.run(agent.agent_id, task.task_id)

    assert outcome.result == "Ledger A is cheapest."
    assert outcome.tool_call_count == 1
    assert outcome.task.status == TaskStatus.COMPLETED
    assert outcome.task.assignee_id == "0.0.4242"
    assert outcome.task.payment_ref is not None
    assert outcome.agent.status == AgentStatus.IDLE
    assert outcome.agent.completed_count == 1
    assert registry.get(agent.agent_id).completed_count == 1
    assert ledger_client.transfers[0].recipient_id == "0.0.4242"
    assert reasoning_service.calls[0]["model"] == "gpt-4o"


def test_run_rejects_busy_agent(
    coordinator: AssignmentCoordinator,
    registry: AgentRegistry,
    lifecycle: TaskLifecycle,
    reasoning_service,
) -> None:
    agent = _agent(registry)
    task = _task(lifecycle)
    registry.claim(agent.agent_id)

    with pytest.raises(StateConflict, match="already executing"):
        coordinator.run(agent.agent_id, task.task_id)

    assert lifecycle.get(task.task_id).status == TaskStatus.OPEN
    assert reasoning_service.calls == []


def test_run_rejects_task_that_is_not_open(
    coordinator: AssignmentCoordinator,
    registry: AgentRegistry,
    lifecycle: TaskLifecycle,
) -> None:
    agent = _agent(registry)
    task = _task(lifecycle)
    lifecycle.accept(task.task_id, "0.0.9")

    with pytest.raises(StateConflict, match="only OPEN tasks"):
        coordinator.run(agent.agent_id, task.task_id)

    assert registry.get(agent.agent_id).status == AgentStatus.IDLE


def test_run_without_reasoning_is_a_configuration_error(
    lifecycle: TaskLifecycle, registry: AgentRegistry
) -> None:
    coordinator = AssignmentCoordinator(tasks=lifecycle, agents=registry, reasoning=None)
    agent = _agent(registry)
    task = _task(lifecycle)

    with pytest.raises(ConfigurationError):
        coordinator.run(agent.agent_id, task.task_id)

    assert registry.get(agent.agent_id).status == AgentStatus.IDLE
    assert lifecycle.get(task.task_id).status == TaskStatus.OPEN


def test_reasoning_failure_releases_agent_and_leaves_task_accepted(
    coordinator: AssignmentCoordinator,
    registry: AgentRegistry,
    lifecycle: TaskLifecycle,
    reasoning_service,
    ledger_client: InMemoryLedgerClient,
) -> None:
    agent = _agent(registry)
    task = _task(lifecycle)
    reasoning_service.fail(UpstreamUnavailable("model timed out"))

    with pytest.raises(UpstreamUnavailable):
        coordinator.run(agent.agent_id, task.task_id)

    after = registry.get(agent.agent_id)
    assert after.status == AgentStatus.IDLE
    assert after.completed_count == 0
    stuck = lifecycle.get(task.task_id)
    assert stuck.status == TaskStatus.ACCEPTED
    assert stuck.assignee_id == "0.0.4242"
    assert ledger_client.transfers == []


def test_failed_release_does_not_mask_reasoning_error(
    monkeypatch: pytest.MonkeyPatch,
    coordinator: AssignmentCoordinator,
    registry: AgentRegistry,
    lifecycle: TaskLifecycle,
    reasoning_service,
) -> None:
    agent = _agent(registry)
    task = _task(lifecycle)
    reasoning_service.fail(UpstreamUnavailable("model timed out"))

    def release_raced(agent_id: str):
        raise StateConflict(f"Agent {agent_id} already released")

    monkeypatch.setattr(registry, "release", release_raced)

    with pytest.raises(UpstreamUnavailable, match="model timed out"):
        coordinator.run(agent.agent_id, task.task_id)


class GatedReasoningService:
    """Holds every caller until `gate` opens, then answers."""

    def __init__(self, gate: threading.Event) -> None:
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ChatReply:
        with self._lock:
            self.calls += 1
        self.gate.wait(timeout=5)
        return ChatReply(message={"role": "assistant", "content": "done"}, content="done")


def test_concurrent_runs_for_one_agent_admit_exactly_one(
    lifecycle: TaskLifecycle, registry: AgentRegistry, search_service
) -> None:
    gate = threading.Event()
    service = GatedReasoningService(gate)
    coordinator = AssignmentCoordinator(
        tasks=lifecycle,
        agents=registry,
        reasoning=ReasoningLoop(service, build_tool_registry(search_service)),
    )
    agent = _agent(registry)
    tasks = [_task(lifecycle) for _ in range(6)]
    barrier = threading.Barrier(len(tasks))
    winners: list[str] = []
    conflicts: list[str] = []
    lock = threading.Lock()

    def run(task_id: str) -> None:
        barrier.wait()
        try:
            coordinator.run(agent.agent_id, task_id)
        except StateConflict:
            with lock:
                conflicts.append(task_id)
                # Keep the winner BUSY until every other run has been turned away.
                if len(conflicts) == len(tasks) - 1:
                    gate.set()
        else:
            with lock:
                winners.append(task_id)

    threads = [threading.Thread(target=run, args=(task.task_id,)) for task in tasks]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(conflicts) == len(tasks) - 1
    assert service.calls == 1
    finished = registry.get(agent.agent_id)
    assert finished.status == AgentStatus.IDLE
    assert finished.completed_count == 1
    statuses = {task.task_id: lifecycle.get(task.task_id).status for task in tasks}
    assert statuses[winners[0]] == TaskStatus.COMPLETED
    assert all(
        status == TaskStatus.OPEN for task_id, status in statuses.items() if task_id != winners[0]
    )
