"""Process-local ledger for tests and offline development."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from decimal import Decimal

from agentflow.ledger.client import SUCCESS, LedgerReceipt, LedgerTransportError


@dataclass(frozen=True)
class TransferRecord:
    transaction_id: str
    sender_id: str
    recipient_id: str
    amount: Decimal


class InMemoryLedgerClient:
    """Append-only topics plus a transfer journal.

    `offline` makes every call raise a transport error; `rejected_transfers`
    makes transfers return a non-success receipt with that status. A transfer
    repeated with the same idempotency key returns the first receipt.
    """

    def __init__(self, operator_id: str = "0.0.2", *, first_entity_num: int = 1000) -> None:
        self._operator_id = operator_id
        self._next_entity_num = first_entity_num
        self._lock = threading.Lock()
        self.topics: dict[str, list[str]] = {}
        self.transfers: list[TransferRecord] = []
        self._receipts_by_key: dict[str, LedgerReceipt] = {}
        self.offline = False
        self.rejected_transfers: str | None = None
        self.calls = 0

    @property
    def operator_account_id(self) -> str:
        return self._operator_id

    def create_topic(self, memo: str, *, timeout_s: float) -> LedgerReceipt:
        with self._lock:
            self._check_online()
            topic_id = f"0.0.{self._next_entity_num}"
            self._next_entity_num += 1
            self.topics[topic_id] = []
        return LedgerReceipt(status=SUCCESS, topic_id=topic_id)

    def submit_message(self, topic_id: str, message: str, *, timeout_s: float) -> LedgerReceipt:
        with self._lock:
            self._check_online()
            messages = self.topics.get(topic_id)
            if messages is None:
                return LedgerReceipt(status="INVALID_TOPIC_ID")
            messages.append(message)
            sequence_number = len(messages)
        return LedgerReceipt(status=SUCCESS, sequence_number=sequence_number)

    def transfer(
        self, recipient_id: str, amount: Decimal, *, idempotency_key: str, timeout_s: float
    ) -> LedgerReceipt:
        with self._lock:
            self._check_online()
            previous = self._receipts_by_key.get(idempotency_key)
            if previous is not None:
                return previous
            if self.rejected_transfers:
                return LedgerReceipt(status=self.rejected_transfers)
            now_ns = time.time_ns()
            transaction_id = (
                f"{self._operator_id}@{now_ns // 1_000_000_000}."
                f"{now_ns % 1_000_000_000:09d}"
            )
            self.transfers.append(
                TransferRecord(
                    transaction_id=transaction_id,
                    sender_id=self._operator_id,
                    recipient_id=recipient_id,
                    amount=amount,
                )
            )
            receipt = LedgerReceipt(status=SUCCESS, transaction_id=transaction_id)
            self._receipts_by_key[idempotency_key] = receipt
        return receipt

    def _check_online(self) -> None:
        self.calls += 1
        if self.offline:
            raise LedgerTransportError("ledger network unreachable")
