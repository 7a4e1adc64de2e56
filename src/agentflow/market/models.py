"""Pydantic records and typed outcomes shared across storage, core and API.

Terms:
- Account id: ledger address in shard.realm.num form, e.g. "0.0.1234".
- Log sequence number: consensus position of the TASK_POSTED event.
- Payment ref: ledger transaction id of the budget transfer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, Field

ACCOUNT_ID_PATTERN = r"^\d+\.\d+\.\d+$"

AccountId = Annotated[str, Field(pattern=ACCOUNT_ID_PATTERN, examples=["0.0.98765"])]
# 8 fractional digits matches the ledger's smallest currency unit.
Budget = Annotated[Decimal, Field(gt=0, max_digits=20, decimal_places=8)]


class TaskStatus(StrEnum):
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"
    # Declared for record compatibility; no transition produces it.
    CANCELLED = "CANCELLED"


class AgentStatus(StrEnum):
    IDLE = "IDLE"
    BUSY = "BUSY"


class LedgerEventType(StrEnum):
    TASK_POSTED = "TASK_POSTED"
    TASK_ACCEPTED = "TASK_ACCEPTED"
    TASK_COMPLETED = "TASK_COMPLETED"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.ACCEPTED}),
    TaskStatus.ACCEPTED: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

AGENT_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.IDLE: frozenset({AgentStatus.BUSY}),
    AgentStatus.BUSY: frozenset({AgentStatus.IDLE}),
}


def can_transition_task(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_TRANSITIONS[current]


def can_transition_agent(current: AgentStatus, target: AgentStatus) -> bool:
    return target in AGENT_TRANSITIONS[current]


class Task(BaseModel):
    """Canonical task record returned by storage and API."""

    task_id: str
    title: str
    description: str
    budget: Budget
    status: TaskStatus = TaskStatus.OPEN
    creator_id: str
    # Payout account of the accepting agent, not the agent's own id.
    assignee_id: str | None = None
    log_sequence_number: int | None = None
    payment_ref: str | None = None
    created_at: datetime
    updated_at: datetime


class Agent(BaseModel):
    """Canonical agent record returned by storage and API."""

    agent_id: str
    name: str
    description: str | None = None
    payout_account_id: str
    model: str
    status: AgentStatus = AgentStatus.IDLE
    completed_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    budget: Budget
    creator_id: AccountId


class AcceptTaskRequest(BaseModel):
    """Request body for POST /tasks/{task_id}/accept."""

    assignee_id: AccountId


class CreateAgentRequest(BaseModel):
    """Request body for POST /agents."""

    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    payout_account_id: AccountId
    # None means "use the configured default model".
    model: str | None = Field(default=None, min_length=1)


class RunAgentRequest(BaseModel):
    """Request body for POST /agents/{agent_id}/run."""

    task_id: str = Field(min_length=1)


class RunResult(BaseModel):
    """Outcome of one successful agent run."""

    agent: Agent
    task: Task
    result: str
    tool_call_count: int = Field(ge=0)


@dataclass(frozen=True)
class Published:
    sequence_number: int


@dataclass(frozen=True)
class Skipped:
    reason: str


PublishOutcome = Published | Skipped


@dataclass(frozen=True)
class Settled:
    transaction_ref: str


@dataclass(frozen=True)
class Unsettled:
    reason: str


PaymentOutcome = Settled | Unsettled


@dataclass(frozen=True)
class TaskTransition:
    """A task write plus what happened on the ledger side of it."""

    task: Task
    event: PublishOutcome
    payment: PaymentOutcome | None = None
