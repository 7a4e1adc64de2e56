"""Ledger wrapper: marketplace log resolution, event publishing, transfers.

Every network call runs under a bounded retry policy (attempt count, per-call
deadline, total budget). Transport errors are retried; a non-success receipt
is final. Running out of attempts or budget raises `LedgerUnavailable`.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from agentflow.ledger.client import LedgerClient, LedgerReceipt, LedgerTransportError
from agentflow.market.errors import (
    ConfigurationError,
    LedgerError,
    LedgerReceiptError,
    LedgerUnavailable,
)
from agentflow.market.models import LedgerEventType, Published, PublishOutcome, Skipped

logger = logging.getLogger(__name__)

DEFAULT_LOG_MEMO = "AgentFlow Marketplace"
MARKETPLACE_LOG_MEMO = "AgentFlow Task Marketplace"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    call_timeout_s: float = 8.0
    total_timeout_s: float = 30.0
    backoff_s: float = 0.25


class LedgerGateway:
    """Shared, long-lived ledger handle used by the task lifecycle."""

    def __init__(
        self,
        client: LedgerClient,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._marketplace_log_id: str | None = None
        self._log_lock = threading.Lock()

    @property
    def operator_account_id(self) -> str:
        return self.client.operator_account_id

    @property
    def marketplace_log_id(self) -> str | None:
        return self._marketplace_log_id

    def initialize(self, existing_log_id: str | None = None) -> str | None:
        """Resolve the marketplace log at startup; never raises."""
        if existing_log_id:
            self.set_marketplace_log_id(existing_log_id)
            logger.info("ledger event=log_resolved source=config log_id=%s", existing_log_id)
            return existing_log_id

        logger.info("ledger event=log_create_attempt memo=%r", MARKETPLACE_LOG_MEMO)
        try:
            log_id = self.create_log(MARKETPLACE_LOG_MEMO)
        except LedgerError as exc:
            logger.warning(
                "ledger event=log_create_failed reason=%s "
                "hint=set AGENTFLOW_LEDGER_MARKETPLACE_LOG_ID or POST /ledger/logs",
                exc,
            )
            return None
        self.set_marketplace_log_id(log_id)
        logger.info(
            "ledger event=log_resolved source=created log_id=%s "
            "hint=set AGENTFLOW_LEDGER_MARKETPLACE_LOG_ID=%s to reuse it",
            log_id,
            log_id,
        )
        return log_id

    def set_marketplace_log_id(self, log_id: str) -> None:
        with self._log_lock:
            if self._marketplace_log_id is not None and self._marketplace_log_id != log_id:
                raise ConfigurationError(
                    f"Marketplace log already set to {self._marketplace_log_id}"
                )
            self._marketplace_log_id = log_id

    def require_marketplace_log_id(self) -> str:
        log_id = self._marketplace_log_id
        if not log_id:
            raise ConfigurationError(
                "Marketplace log not initialised. Set AGENTFLOW_LEDGER_MARKETPLACE_LOG_ID "
                "or create one via POST /ledger/logs."
            )
        return log_id

    def status(self) -> dict[str, str | None]:
        return {
            "operator_id": self.operator_account_id,
            "marketplace_log_id": self._marketplace_log_id,
        }

    def create_log(self, memo: str = DEFAULT_LOG_MEMO) -> str:
        receipt = self._call(
            "create_log", lambda timeout_s: self.client.create_topic(memo, timeout_s=timeout_s)
        )
        if not receipt.topic_id:
            raise LedgerReceiptError(
                "Log creation failed: no log id in receipt", status=receipt.status
            )
        logger.info("ledger event=log_created log_id=%s", receipt.topic_id)
        return receipt.topic_id

    def publish(self, log_id: str, message: str) -> int:
        receipt = self._call(
            "publish",
            lambda timeout_s: self.client.submit_message(log_id, message, timeout_s=timeout_s),
        )
        sequence_number = receipt.sequence_number if receipt.sequence_number is not None else -1
        logger.info(
            "ledger event=published log_id=%s sequence_number=%s preview=%r",
            log_id,
            sequence_number,
            message[:80],
        )
        return sequence_number

    def post_event(self, event_type: LedgerEventType, payload: Mapping[str, Any]) -> int:
        log_id = self.require_marketplace_log_id()
        message = encode_event(event_type, payload, timestamp_ms=time.time_ns() // 1_000_000)
        return self.publish(log_id, message)

    def try_post_event(
        self, event_type: LedgerEventType, payload: Mapping[str, Any]
    ) -> PublishOutcome:
        """Best-effort publish: failures are logged and reported as `Skipped`."""
        try:
            return Published(self.post_event(event_type, payload))
        except (ConfigurationError, LedgerError) as exc:
            logger.warning(
                "ledger event=publish_skipped event_type=%s reason=%s",
                event_type.value,
                exc,
            )
            return Skipped(str(exc))

    def transfer(self, recipient_id: str, amount: Decimal) -> str:
        # One key for every attempt so a retried transfer cannot pay twice.
        idempotency_key = str(uuid.uuid4())
        receipt = self._call(
            "transfer",
            lambda timeout_s: self.client.transfer(
                recipient_id, amount, idempotency_key=idempotency_key, timeout_s=timeout_s
            ),
        )
        if not receipt.transaction_id:
            raise LedgerReceiptError(
                "Transfer receipt carried no transaction id", status=receipt.status
            )
        logger.info(
            "ledger event=transferred recipient_id=%s amount=%s transaction_id=%s",
            recipient_id,
            amount,
            receipt.transaction_id,
        )
        return receipt.transaction_id

    def _call(self, operation: str, fn: Callable[[float], LedgerReceipt]) -> LedgerReceipt:
        policy = self.retry_policy
        deadline = self._clock() + policy.total_timeout_s
        last_error: Exception | None = None

        for attempt in range(policy.max_attempts):
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            try:
                receipt = fn(min(policy.call_timeout_s, remaining))
            except (LedgerTransportError, TimeoutError, OSError) as exc:
                last_error = exc
                logger.warning(
                    "ledger event=call_failed operation=%s attempt=%d/%d reason=%s",
                    operation,
                    attempt + 1,
                    policy.max_attempts,
                    exc,
                )
                if attempt + 1 < policy.max_attempts and policy.backoff_s > 0:
                    self._sleep(min(policy.backoff_s, max(0.0, deadline - self._clock())))
                continue

            if not receipt.ok:
                raise LedgerReceiptError(
                    f"Ledger {operation} failed with status: {receipt.status}",
                    status=receipt.status,
                )
            return receipt

        raise LedgerUnavailable(
            f"Ledger {operation} failed after retry budget was spent: {last_error}"
        )


def encode_event(
    event_type: LedgerEventType, payload: Mapping[str, Any], *, timestamp_ms: int
) -> str:
    """Serialize an event as `{"eventType", **payload, "timestamp"}`."""
    body: dict[str, Any] = {"eventType": event_type.value, **payload, "timestamp": timestamp_ms}
    return json.dumps(body, default=_json_default, separators=(",", ":"))


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
