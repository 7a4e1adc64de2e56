"""JSON-over-HTTP client for a ledger relay service.

The relay signs and submits transactions with the operator credential and
answers with the consensus receipt:

- POST /topics                  {"memo"}              -> {"status", "topicId"}
- POST /topics/{id}/messages    {"message"}           -> {"status", "sequenceNumber"}
- POST /transfers               {"from", "to", "amount"} -> {"status", "transactionId"}

Transfers carry an `Idempotency-Key` header that stays the same across
retries, so the relay can drop duplicates.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from http.client import HTTPException
from typing import Any
from urllib import error, parse, request

from agentflow.ledger.client import LedgerReceipt, LedgerTransportError
from agentflow.market.errors import LedgerReceiptError

logger = logging.getLogger(__name__)


class HttpLedgerClient:
    def __init__(
        self,
        *,
        base_url: str,
        operator_id: str,
        operator_key: str,
        network: str = "testnet",
    ) -> None:
        if not operator_id or not operator_key:
            raise ValueError("Ledger operator id and key must both be set")
        self.base_url = base_url.rstrip("/")
        self.network = network
        self._operator_id = operator_id
        self._operator_key = operator_key

    @property
    def operator_account_id(self) -> str:
        return self._operator_id

    def create_topic(self, memo: str, *, timeout_s: float) -> LedgerReceipt:
        body = self._post("/topics", {"memo": memo}, timeout_s=timeout_s)
        return LedgerReceipt(status=_status(body), topic_id=body.get("topicId"))

    def submit_message(self, topic_id: str, message: str, *, timeout_s: float) -> LedgerReceipt:
        path = f"/topics/{parse.quote(topic_id, safe='.')}/messages"
        body = self._post(path, {"message": message}, timeout_s=timeout_s)
        raw_sequence = body.get("sequenceNumber")
        status = _status(body)
        try:
            sequence_number = int(raw_sequence) if raw_sequence is not None else None
        except (TypeError, ValueError) as exc:
            raise LedgerReceiptError(
                f"Ledger relay returned malformed sequence number: {raw_sequence!r}",
                status=status,
            ) from exc
        return LedgerReceipt(status=status, sequence_number=sequence_number)

    def transfer(
        self, recipient_id: str, amount: Decimal, *, idempotency_key: str, timeout_s: float
    ) -> LedgerReceipt:
        payload = {"from": self._operator_id, "to": recipient_id, "amount": str(amount)}
        body = self._post(
            "/transfers",
            payload,
            timeout_s=timeout_s,
            extra_headers={"Idempotency-Key": idempotency_key},
        )
        return LedgerReceipt(status=_status(body), transaction_id=body.get("transactionId"))

    def _post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        timeout_s: float,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("ledger_http event=request network=%s url=%s", self.network, url)
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self._operator_key}",
                "Content-Type": "application/json",
                "X-Ledger-Operator": self._operator_id,
                "X-Ledger-Network": self.network,
                **(extra_headers or {}),
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            if exc.code >= 500:
                raise LedgerTransportError(
                    f"Ledger relay failed with status {exc.code}: {raw_error[:400]}"
                ) from exc
            # 4xx carries a receipt-style rejection; surface it as one.
            return _parse_body(raw_error) or {"status": f"HTTP_{exc.code}"}
        except (error.URLError, TimeoutError) as exc:
            raise LedgerTransportError(f"Ledger relay unreachable: {exc}") from exc
        except HTTPException as exc:
            # Truncated or garbled response; the call may or may not have landed.
            raise LedgerTransportError(f"Ledger relay response broken: {exc!r}") from exc
        except UnicodeDecodeError as exc:
            raise LedgerTransportError("Ledger relay returned undecodable response") from exc

        body = _parse_body(raw)
        if body is None:
            raise LedgerTransportError("Ledger relay returned non-JSON response")
        return body


def _parse_body(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _status(body: dict[str, Any]) -> str:
    return str(body.get("status") or "UNKNOWN")
