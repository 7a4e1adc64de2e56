"""Storage backends for task and agent records."""

from agentflow.storage.base import MarketplaceStorage
from agentflow.storage.memory import InMemoryMarketplaceStorage
from agentflow.storage.postgres import PostgresMarketplaceStorage

__all__ = [
    "InMemoryMarketplaceStorage",
    "MarketplaceStorage",
    "PostgresMarketplaceStorage",
]
