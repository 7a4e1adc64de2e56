"""Assignment coordinator: one agent takes one OPEN task through to payment.

The agent is claimed (IDLE -> BUSY) with a conditional write before the task
is accepted, so two concurrent runs for the same agent cannot both start.
If reasoning fails the agent is released and the task stays ACCEPTED; there is
no compensating un-accept.
"""

from __future__ import annotations

import logging

from agentflow.market.agents import AgentRegistry
from agentflow.market.errors import ConfigurationError, StateConflict
from agentflow.market.models import AgentStatus, RunResult, TaskStatus
from agentflow.market.tasks import TaskLifecycle
from agentflow.reasoning.loop import ReasoningLoop

logger = logging.getLogger(__name__)


class AssignmentCoordinator:
    def __init__(
        self,
        *,
        tasks: TaskLifecycle,
        agents: AgentRegistry,
        reasoning: ReasoningLoop | None,
    ) -> None:
        self.tasks = tasks
        self.agents = agents
        self.reasoning = reasoning

    def run(self, agent_id: str, task_id: str) -> RunResult:
        agent = self.agents.get(agent_id)
        if agent.status == AgentStatus.BUSY:
            raise StateConflict(f'Agent "{agent.name}" is already executing a task')

        task = self.tasks.get(task_id)
        if task.status != TaskStatus.OPEN:
            raise StateConflict(
                f"Task is {task.status.value}; only OPEN tasks can be assigned"
            )

        reasoning = self.reasoning
        if reasoning is None:
            raise ConfigurationError(
                "Reasoning service is not configured. Set OPENAI_API_KEY and TAVILY_API_KEY."
            )

        agent = self.agents.claim(agent_id)
        try:
            accepted = self.tasks.accept(task_id, agent.payout_account_id).task
        except Exception:
            self._release_after_failure(agent_id)
            raise

        logger.info(
            "assignment event=start agent_id=%s agent=%r task_id=%s title=%r",
            agent_id,
            agent.name,
            task_id,
            accepted.title,
        )
        try:
            outcome = reasoning.run(agent, accepted)
        except Exception as exc:
            self._release_after_failure(agent_id)
            logger.warning(
                "assignment event=reasoning_failed agent_id=%s task_id=%s "
                "task_status=ACCEPTED reason=%s",
                agent_id,
                task_id,
                exc,
            )
            raise

        try:
            completed = self.tasks.complete(task_id).task
        except Exception:
            self._release_after_failure(agent_id)
            raise
        finished = self.agents.record_completion(agent_id)

        logger.info(
            "assignment event=completed agent_id=%s task_id=%s tool_calls=%d",
            agent_id,
            task_id,
            outcome.tool_call_count,
        )
        return RunResult(
            agent=finished,
            task=completed,
            result=outcome.result,
            tool_call_count=outcome.tool_call_count,
        )

    def _release_after_failure(self, agent_id: str) -> None:
        # Called from an except block; must not mask the error being handled.
        try:
            self.agents.release(agent_id)
        except Exception:  # noqa: BLE001
            logger.exception("assignment event=release_failed agent_id=%s", agent_id)
