"""Storage interface for marketplace records.

`update_task` / `update_agent` are single conditional writes: when
`expected_status` is given the row only changes if its current status matches,
and `None` is returned when nothing matched (unknown id or failed predicate).
"""

from __future__ import annotations

from typing import Any, Protocol

from agentflow.market.models import Agent, AgentStatus, Task, TaskStatus


class MarketplaceStorage(Protocol):
    def migrate(self) -> None: ...

    def insert_task(self, task: Task) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]: ...

    def update_task(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus | None = None,
        **changes: Any,
    ) -> Task | None: ...

    def insert_agent(self, agent: Agent) -> Agent: ...

    def get_agent(self, agent_id: str) -> Agent | None: ...

    def list_agents(self) -> list[Agent]: ...

    def update_agent(
        self,
        agent_id: str,
        *,
        expected_status: AgentStatus | None = None,
        **changes: Any,
    ) -> Agent | None: ...
