"""Task lifecycle: OPEN -> ACCEPTED -> COMPLETED with best-effort ledger calls.

Every status change is a conditional write keyed on the expected prior status,
so the losing side of a concurrent accept/complete gets `StateConflict`.
Ledger event publication never fails a transition. Payment failure on
`complete` leaves `payment_ref` empty and, unless settlement is required,
still completes the task.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

from agentflow.ledger.gateway import LedgerGateway
from agentflow.market.errors import LedgerError, NotFound, PaymentNotSettled, StateConflict
from agentflow.market.models import (
    LedgerEventType,
    PaymentOutcome,
    Published,
    Settled,
    Task,
    TaskStatus,
    TaskTransition,
    Unsettled,
    can_transition_task,
)
from agentflow.storage.base import MarketplaceStorage

logger = logging.getLogger(__name__)


class TaskLifecycle:
    def __init__(
        self,
        storage: MarketplaceStorage,
        ledger: LedgerGateway,
        *,
        require_payment_settlement: bool = False,
    ) -> None:
        self.storage = storage
        self.ledger = ledger
        self.require_payment_settlement = require_payment_settlement

    def create(
        self, *, title: str, description: str, budget: Decimal, creator_id: str
    ) -> TaskTransition:
        now = datetime.now(UTC)
        # Persist first so the ledger event can carry a stable id.
        task = self.storage.insert_task(
            Task(
                task_id=str(uuid4()),
                title=title,
                description=description,
                budget=budget,
                status=TaskStatus.OPEN,
                creator_id=creator_id,
                created_at=now,
                updated_at=now,
            )
        )

        event = self.ledger.try_post_event(
            LedgerEventType.TASK_POSTED,
            {
                "taskId": task.task_id,
                "title": task.title,
                "budget": task.budget,
                "creatorId": task.creator_id,
            },
        )
        if isinstance(event, Published):
            refreshed = self.storage.update_task(
                task.task_id, log_sequence_number=event.sequence_number
            )
            if refreshed is not None:
                task = refreshed
        else:
            logger.warning(
                "task_lifecycle event=posted_unlogged task_id=%s reason=%s",
                task.task_id,
                event.reason,
            )

        logger.info("task_lifecycle event=created task_id=%s title=%r", task.task_id, task.title)
        return TaskTransition(task=task, event=event)

    def get(self, task_id: str) -> Task:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        return self.storage.list_tasks(status)

    def accept(self, task_id: str, assignee_id: str) -> TaskTransition:
        current = self.get(task_id)
        if not can_transition_task(current.status, TaskStatus.ACCEPTED):
            raise StateConflict(f"Task is {current.status.value} and cannot be accepted")

        updated = self.storage.update_task(
            task_id,
            expected_status=TaskStatus.OPEN,
            status=TaskStatus.ACCEPTED,
            assignee_id=assignee_id,
        )
        if updated is None:
            raise StateConflict(f"Task {task_id} was modified concurrently and cannot be accepted")

        event = self.ledger.try_post_event(
            LedgerEventType.TASK_ACCEPTED,
            {"taskId": task_id, "assigneeId": assignee_id},
        )
        logger.info(
            "task_lifecycle event=accepted task_id=%s assignee_id=%s", task_id, assignee_id
        )
        return TaskTransition(task=updated, event=event)

    def complete(self, task_id: str) -> TaskTransition:
        current = self.get(task_id)
        if not can_transition_task(current.status, TaskStatus.COMPLETED):
            raise StateConflict(
                f"Task is {current.status.value}; only ACCEPTED tasks can be completed"
            )
        assignee_id = current.assignee_id
        if not assignee_id:
            raise StateConflict("Task has no assignee to pay")

        # Claim the transition before paying so only one caller ever transfers.
        completed = self.storage.update_task(
            task_id,
            expected_status=TaskStatus.ACCEPTED,
            status=TaskStatus.COMPLETED,
        )
        if completed is None:
            raise StateConflict(f"Task {task_id} was modified concurrently and cannot be completed")

        try:
            payment = self._pay(task_id, assignee_id, current.budget)
        except Exception:
            if self.require_payment_settlement:
                self._reopen_unpaid(task_id)
            raise

        if isinstance(payment, Settled):
            refreshed = self.storage.update_task(
                task_id,
                expected_status=TaskStatus.COMPLETED,
                payment_ref=payment.transaction_ref,
            )
            if refreshed is not None:
                completed = refreshed
        elif self.require_payment_settlement:
            self._reopen_unpaid(task_id)
            raise PaymentNotSettled(f"Task {task_id} stays ACCEPTED: {payment.reason}")

        event = self.ledger.try_post_event(
            LedgerEventType.TASK_COMPLETED,
            {
                "taskId": task_id,
                "assigneeId": assignee_id,
                "budget": current.budget,
                "paymentRef": completed.payment_ref,
            },
        )
        logger.info(
            "task_lifecycle event=completed task_id=%s assignee_id=%s budget=%s payment_ref=%s",
            task_id,
            assignee_id,
            current.budget,
            completed.payment_ref,
        )
        return TaskTransition(task=completed, event=event, payment=payment)

    def _reopen_unpaid(self, task_id: str) -> None:
        """Undo the COMPLETED claim when settlement is required but did not happen."""
        self.storage.update_task(
            task_id,
            expected_status=TaskStatus.COMPLETED,
            status=TaskStatus.ACCEPTED,
        )
        logger.warning("task_lifecycle event=reopened_unpaid task_id=%s", task_id)

    def _pay(self, task_id: str, assignee_id: str, budget: Decimal) -> PaymentOutcome:
        try:
            return Settled(self.ledger.transfer(assignee_id, budget))
        except LedgerError as exc:
            logger.warning(
                "task_lifecycle event=payment_failed task_id=%s assignee_id=%s reason=%s",
                task_id,
                assignee_id,
                exc,
            )
            return Unsettled(str(exc))
