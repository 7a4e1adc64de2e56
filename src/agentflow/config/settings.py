"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agentflow"
    app_env: str = "dev"
    log_level: str = "INFO"
    # Empty means in-memory storage (records are lost on restart).
    database_url: str = ""
    # Comma separated bearer tokens; empty leaves protected routes open.
    api_tokens: str = ""

    ledger_backend: Literal["memory", "http"] = "memory"
    ledger_base_url: str = "http://127.0.0.1:7546/api/v1"
    ledger_network: Literal["testnet", "mainnet"] = "testnet"
    ledger_operator_id: str = "0.0.2"
    ledger_operator_key: str = ""
    ledger_marketplace_log_id: str = ""
    ledger_max_attempts: int = Field(default=3, ge=1)
    ledger_call_timeout_s: float = Field(default=8.0, gt=0)
    ledger_total_timeout_s: float = Field(default=30.0, gt=0)
    ledger_backoff_s: float = Field(default=0.25, ge=0.0)
    require_payment_settlement: bool = False

    openai_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.5, ge=0.0)
    default_agent_model: str = "gpt-4o"
    reasoning_max_turns: int | None = Field(default=None, ge=1)

    tavily_api_key: str = ""
    search_base_url: str = "https://api.tavily.com"
    search_timeout_s: float = Field(default=15.0, ge=0.5)

    model_config = SettingsConfigDict(
        env_prefix="AGENTFLOW_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_tavily_api_key(self) -> str:
        return self.tavily_api_key or os.getenv("TAVILY_API_KEY", "")

    def resolved_api_tokens(self) -> frozenset[str]:
        return frozenset(token.strip() for token in self.api_tokens.split(",") if token.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
