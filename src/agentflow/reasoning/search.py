"""Web search collaborator and the text format fed back to the model."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Protocol
from urllib import error, request

from pydantic import BaseModel, ValidationError

from agentflow.market.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

NO_RESULTS = "No results found."
RESULT_DIVIDER = "\n\n---\n\n"

SearchDepth = Literal["basic", "advanced"]


class SearchResult(BaseModel):
    title: str
    url: str
    content: str


class SearchService(Protocol):
    def search(
        self, query: str, *, max_results: int = 5, depth: SearchDepth = "basic"
    ) -> list[SearchResult]: ...


class TavilySearchAdapter:
    """Tavily-compatible `POST /search` client."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.tavily.com",
        timeout_s: float = 15.0,
    ) -> None:
        if not api_key:
            raise ValueError("Search API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def search(
        self, query: str, *, max_results: int = 5, depth: SearchDepth = "basic"
    ) -> list[SearchResult]:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
            "search_depth": depth,
        }
        req = request.Request(
            url=f"{self.base_url}/search",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise UpstreamUnavailable(
                f"Search request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except (error.URLError, TimeoutError) as exc:
            raise UpstreamUnavailable(f"Search request failed: {exc}") from exc

        try:
            body = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailable("Search service returned non-JSON response") from exc
        return _parse_results(body)[:max_results]


def _parse_results(body: Any) -> list[SearchResult]:
    rows = body.get("results", []) if isinstance(body, dict) else []
    results: list[SearchResult] = []
    for row in rows if isinstance(rows, list) else []:
        try:
            results.append(SearchResult.model_validate(row))
        except ValidationError:
            logger.debug("search event=result_skipped row=%r", row)
    return results


def format_search_results(results: list[SearchResult]) -> str:
    if not results:
        return NO_RESULTS
    return RESULT_DIVIDER.join(
        f"**{result.title}**\n{result.url}\n{result.content}" for result in results
    )
