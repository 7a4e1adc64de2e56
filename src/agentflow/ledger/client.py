"""Raw ledger primitives consumed by the gateway."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

SUCCESS = "SUCCESS"


class LedgerTransportError(Exception):
    """Network-level failure; the gateway retries these."""


@dataclass(frozen=True)
class LedgerReceipt:
    status: str
    topic_id: str | None = None
    sequence_number: int | None = None
    transaction_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS


class LedgerClient(Protocol):
    @property
    def operator_account_id(self) -> str: ...

    def create_topic(self, memo: str, *, timeout_s: float) -> LedgerReceipt: ...

    def submit_message(self, topic_id: str, message: str, *, timeout_s: float) -> LedgerReceipt: ...

    def transfer(
        self, recipient_id: str, amount: Decimal, *, idempotency_key: str, timeout_s: float
    ) -> LedgerReceipt:
        """Pay `amount`; a repeated `idempotency_key` must not pay twice."""
        ...
