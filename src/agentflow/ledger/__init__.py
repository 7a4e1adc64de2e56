"""Ledger access: append-only marketplace log and value transfers."""

from agentflow.ledger.client import LedgerClient, LedgerReceipt, LedgerTransportError
from agentflow.ledger.gateway import LedgerGateway, RetryPolicy
from agentflow.ledger.http import HttpLedgerClient
from agentflow.ledger.memory import InMemoryLedgerClient

__all__ = [
    "HttpLedgerClient",
    "InMemoryLedgerClient",
    "LedgerClient",
    "LedgerGateway",
    "LedgerReceipt",
    "LedgerTransportError",
    "RetryPolicy",
]
