"""Agent routes."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from agentflow.market.models import Agent, CreateAgentRequest, RunAgentRequest, RunResult

router = APIRouter(prefix="/agents", tags=["Agents"])


@router.post("", response_model=Agent, status_code=status.HTTP_201_CREATED)
def create_agent(payload: CreateAgentRequest, request: Request) -> Agent:
    return request.app.state.agents.create(
        name=payload.name,
        payout_account_id=payload.payout_account_id,
        model=payload.model,
        description=payload.description,
    )


@router.get("", response_model=list[Agent])
def list_agents(request: Request) -> list[Agent]:
    return request.app.state.agents.list_agents()


@router.get("/{agent_id}", response_model=Agent)
def get_agent(agent_id: str, request: Request) -> Agent:
    return request.app.state.agents.get(agent_id)


@router.post("/{agent_id}/run", response_model=RunResult)
def run_agent(agent_id: str, payload: RunAgentRequest, request: Request) -> RunResult:
    """Accept an OPEN task for the agent, solve it, and settle payment.

    Blocks until the reasoning loop finishes.
    """
    return request.app.state.coordinator.run(agent_id, payload.task_id)
