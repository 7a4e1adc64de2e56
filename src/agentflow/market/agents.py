"""Agent registry: identity, IDLE/BUSY state and the completion counter."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import uuid4

from agentflow.market.errors import NotFound, StateConflict
from agentflow.market.models import Agent, AgentStatus, can_transition_agent
from agentflow.storage.base import MarketplaceStorage

logger = logging.getLogger(__name__)


class AgentRegistry:
    def __init__(self, storage: MarketplaceStorage, *, default_model: str = "gpt-4o") -> None:
        self.storage = storage
        self.default_model = default_model

    def create(
        self,
        *,
        name: str,
        payout_account_id: str,
        model: str | None = None,
        description: str | None = None,
    ) -> Agent:
        now = datetime.now(UTC)
        agent = self.storage.insert_agent(
            Agent(
                agent_id=str(uuid4()),
                name=name,
                description=description,
                payout_account_id=payout_account_id,
                model=model or self.default_model,
                status=AgentStatus.IDLE,
                completed_count=0,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("agent_registry event=registered agent_id=%s name=%r", agent.agent_id, name)
        return agent

    def get(self, agent_id: str) -> Agent:
        agent = self.storage.get_agent(agent_id)
        if agent is None:
            raise NotFound(f"Agent {agent_id} not found")
        return agent

    def list_agents(self) -> list[Agent]:
        return self.storage.list_agents()

    def set_status(
        self,
        agent_id: str,
        status: AgentStatus,
        *,
        expected: AgentStatus | None = None,
    ) -> Agent:
        """Conditionally write `status`; `expected` defaults to its only legal predecessor."""
        if expected is None:
            expected = next(
                prior for prior in AgentStatus if can_transition_agent(prior, status)
            )
        elif not can_transition_agent(expected, status):
            raise StateConflict(f"Agent cannot move from {expected.value} to {status.value}")

        updated = self.storage.update_agent(agent_id, expected_status=expected, status=status)
        if updated is None:
            current = self.get(agent_id)
            raise StateConflict(
                f'Agent "{current.name}" is {current.status.value}, expected {expected.value}'
            )
        return updated

    def claim(self, agent_id: str) -> Agent:
        return self.set_status(agent_id, AgentStatus.BUSY, expected=AgentStatus.IDLE)

    def release(self, agent_id: str) -> Agent:
        return self.set_status(agent_id, AgentStatus.IDLE, expected=AgentStatus.BUSY)

    def record_completion(self, agent_id: str) -> Agent:
        """BUSY -> IDLE and bump the counter in one write."""
        current = self.get(agent_id)
        if current.status != AgentStatus.BUSY:
            raise StateConflict(f'Agent "{current.name}" is not running a task')
        # The BUSY holder is the only writer, so the counter read above is stable.
        updated = self.storage.update_agent(
            agent_id,
            expected_status=AgentStatus.BUSY,
            status=AgentStatus.IDLE,
            completed_count=current.completed_count + 1,
        )
        if updated is None:
            raise StateConflict(f"Agent {agent_id} changed state while finishing a run")
        return updated
