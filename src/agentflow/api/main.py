"""FastAPI application wiring for the AgentFlow marketplace.

Shared services (storage, ledger gateway, task lifecycle, agent registry,
coordinator) are built once per app and stored on `app.state`; routers read
them from the request.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agentflow import __version__
from agentflow.api import agents, ledger, tasks
from agentflow.api.auth import StaticTokenVerifier, TokenVerifier
from agentflow.api.errors import register_error_handlers
from agentflow.config import Settings, get_settings
from agentflow.ledger import (
    HttpLedgerClient,
    InMemoryLedgerClient,
    LedgerClient,
    LedgerGateway,
    RetryPolicy,
)
from agentflow.market.agents import AgentRegistry
from agentflow.market.coordinator import AssignmentCoordinator
from agentflow.market.tasks import TaskLifecycle
from agentflow.reasoning import (
    OpenAIChatCompletionsAdapter,
    ReasoningLoop,
    ReasoningService,
    SearchService,
    TavilySearchAdapter,
    build_tool_registry,
)
from agentflow.storage import (
    InMemoryMarketplaceStorage,
    MarketplaceStorage,
    PostgresMarketplaceStorage,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_storage(settings: Settings) -> MarketplaceStorage:
    if settings.database_url:
        return PostgresMarketplaceStorage(settings.database_url)
    logger.warning("storage event=in_memory reason=no_database_url")
    return InMemoryMarketplaceStorage()


def build_ledger_client(settings: Settings) -> LedgerClient:
    if settings.ledger_backend == "http":
        if not settings.ledger_operator_id or not settings.ledger_operator_key:
            raise RuntimeError(
                "AGENTFLOW_LEDGER_OPERATOR_ID and AGENTFLOW_LEDGER_OPERATOR_KEY are "
                "required when AGENTFLOW_LEDGER_BACKEND=http."
            )
        return HttpLedgerClient(
            base_url=settings.ledger_base_url,
            operator_id=settings.ledger_operator_id,
            operator_key=settings.ledger_operator_key,
            network=settings.ledger_network,
        )
    return InMemoryLedgerClient(operator_id=settings.ledger_operator_id)


def build_reasoning_loop(
    settings: Settings,
    *,
    reasoning_service: ReasoningService | None,
    search_service: SearchService | None,
) -> ReasoningLoop | None:
    """Return None when either collaborator is missing; runs then fail with 503."""
    if reasoning_service is None:
        api_key = settings.resolved_openai_api_key()
        if api_key:
            reasoning_service = OpenAIChatCompletionsAdapter(
                api_key=api_key,
                base_url=settings.llm_base_url,
                timeout_s=settings.llm_timeout_s,
                max_retries=settings.llm_max_retries,
                backoff_s=settings.llm_backoff_s,
            )
    if search_service is None:
        api_key = settings.resolved_tavily_api_key()
        if api_key:
            search_service = TavilySearchAdapter(
                api_key=api_key,
                base_url=settings.search_base_url,
                timeout_s=settings.search_timeout_s,
            )
    if reasoning_service is None or search_service is None:
        logger.warning(
            "reasoning event=disabled llm_configured=%s search_configured=%s",
            reasoning_service is not None,
            search_service is not None,
        )
        return None
    return ReasoningLoop(
        reasoning_service,
        build_tool_registry(search_service),
        max_turns=settings.reasoning_max_turns,
    )


def create_app(
    *,
    storage: MarketplaceStorage | None = None,
    ledger_client: LedgerClient | None = None,
    reasoning_service: ReasoningService | None = None,
    search_service: SearchService | None = None,
    token_verifier: TokenVerifier | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    task_storage = storage or build_storage(settings)
    gateway = LedgerGateway(
        ledger_client or build_ledger_client(settings),
        retry_policy=RetryPolicy(
            max_attempts=settings.ledger_max_attempts,
            call_timeout_s=settings.ledger_call_timeout_s,
            total_timeout_s=settings.ledger_total_timeout_s,
            backoff_s=settings.ledger_backoff_s,
        ),
    )
    task_lifecycle = TaskLifecycle(
        task_storage,
        gateway,
        require_payment_settlement=settings.require_payment_settlement,
    )
    agent_registry = AgentRegistry(task_storage, default_model=settings.default_agent_model)
    coordinator = AssignmentCoordinator(
        tasks=task_lifecycle,
        agents=agent_registry,
        reasoning=build_reasoning_loop(
            settings,
            reasoning_service=reasoning_service,
            search_service=search_service,
        ),
    )
    verifier = token_verifier or StaticTokenVerifier(settings.resolved_api_tokens())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task_storage.migrate()
        gateway.initialize(settings.ledger_marketplace_log_id or None)
        if not verifier.enabled:
            logger.warning("auth event=disabled reason=no_api_tokens")
        logger.info(
            "startup event=ready app_env=%s operator_id=%s marketplace_log_id=%s",
            settings.app_env,
            gateway.operator_account_id,
            gateway.marketplace_log_id,
        )
        yield

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = task_storage
    app.state.ledger = gateway
    app.state.tasks = task_lifecycle
    app.state.agents = agent_registry
    app.state.coordinator = coordinator
    app.state.token_verifier = verifier

    register_error_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    app.include_router(tasks.router)
    app.include_router(agents.router)
    app.include_router(ledger.router)
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run("agentflow.api.main:app", host="0.0.0.0", port=8000)


# Module-level app for `uvicorn agentflow.api.main:app`.
app = create_app()
