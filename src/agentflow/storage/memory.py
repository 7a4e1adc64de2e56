"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from agentflow.market.models import Agent, AgentStatus, Task, TaskStatus

TASK_FIELDS = frozenset(Task.model_fields) - {"task_id", "created_at"}
AGENT_FIELDS = frozenset(Agent.model_fields) - {"agent_id", "created_at"}


class InMemoryMarketplaceStorage:
    """Dict-backed storage; one lock makes every conditional update atomic."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._agents: dict[str, Agent] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def insert_task(self, task: Task) -> Task:
        with self._lock:
            if task.task_id in self._tasks:
                raise KeyError(f"Task {task.task_id} already exists")
            self._tasks[task.task_id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        with self._lock:
            rows = [
                task.model_copy(deep=True)
                for task in self._tasks.values()
                if status is None or task.status == status
            ]
        return sorted(rows, key=lambda task: task.created_at, reverse=True)

    def update_task(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus | None = None,
        **changes: Any,
    ) -> Task | None:
        _reject_unknown_fields(changes, TASK_FIELDS)
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            if expected_status is not None and current.status != expected_status:
                return None
            updated = current.model_copy(
                update={**changes, "updated_at": datetime.now(UTC)}, deep=True
            )
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)

    def insert_agent(self, agent: Agent) -> Agent:
        with self._lock:
            if agent.agent_id in self._agents:
                raise KeyError(f"Agent {agent.agent_id} already exists")
            self._agents[agent.agent_id] = agent.model_copy(deep=True)
        return agent.model_copy(deep=True)

    def get_agent(self, agent_id: str) -> Agent | None:
        with self._lock:
            agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    def list_agents(self) -> list[Agent]:
        with self._lock:
            rows = [agent.model_copy(deep=True) for agent in self._agents.values()]
        return sorted(rows, key=lambda agent: agent.created_at, reverse=True)

    def update_agent(
        self,
        agent_id: str,
        *,
        expected_status: AgentStatus | None = None,
        **changes: Any,
    ) -> Agent | None:
        _reject_unknown_fields(changes, AGENT_FIELDS)
        with self._lock:
            current = self._agents.get(agent_id)
            if current is None:
                return None
            if expected_status is not None and current.status != expected_status:
                return None
            updated = current.model_copy(
                update={**changes, "updated_at": datetime.now(UTC)}, deep=True
            )
            self._agents[agent_id] = updated
        return updated.model_copy(deep=True)


def _reject_unknown_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Unknown fields for update: {sorted(unknown)}")
