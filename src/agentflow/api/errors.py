"""Map marketplace exceptions onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentflow.market.errors import (
    ConfigurationError,
    LedgerError,
    MarketplaceError,
    NotFound,
    ParseError,
    StateConflict,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: tuple[tuple[type[MarketplaceError], int], ...] = (
    (NotFound, 404),
    (StateConflict, 409),
    (ConfigurationError, 503),
    (LedgerError, 502),
    (ParseError, 502),
    (UpstreamUnavailable, 502),
)


def status_for(exc: MarketplaceError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        status_code = status_for(exc)
        log = logger.warning if status_code >= 500 else logger.info
        log(
            "api event=error method=%s path=%s status=%d error=%s detail=%s",
            request.method,
            request.url.path,
            status_code,
            exc.error_code,
            exc,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": exc.error_code},
        )
