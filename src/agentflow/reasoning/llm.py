from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error, request

from agentflow.market.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolInvocation:
    """One model-issued tool call; `arguments` is the raw JSON string."""

    invocation_id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatReply:
    # Assistant message exactly as it must be echoed back into the history.
    message: dict[str, Any]
    content: str | None = None
    tool_calls: list[ToolInvocation] = field(default_factory=list)


class ReasoningService(Protocol):
    """Interface for tool-calling chat completions."""

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ChatReply: ...


class OpenAIChatCompletionsAdapter:
    """Small OpenAI adapter using the chat completions REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        max_retries: int = 1,
        backoff_s: float = 0.5,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ChatReply:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice
        response_json = self._request_with_retry(payload, model=model)
        return parse_chat_reply(response_json)

    def _request_with_retry(self, payload: dict[str, Any], *, model: str) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload, model=model)
            except (TimeoutError, ValueError, error.URLError) as exc:
                last_error = exc
                logger.warning(
                    "OpenAI request failed attempt=%d/%d model=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    model,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        raise UpstreamUnavailable(f"Reasoning service request failed: {last_error}")

    def _request(self, payload: dict[str, Any], *, model: str) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if _trace_enabled():
            logger.warning(
                "LLM trace request provider=openai model=%s url=%s messages=%d",
                model,
                url,
                len(payload["messages"]),
            )
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise error.HTTPError(
                exc.url,
                exc.code,
                f"OpenAI API request failed: {raw_error[:400]}",
                exc.headers,
                exc.fp,
            ) from exc
        if _trace_enabled():
            logger.warning("LLM trace response provider=openai model=%s status=ok", model)
        return json.loads(body)


def parse_chat_reply(response_json: dict[str, Any]) -> ChatReply:
    choices = response_json.get("choices", [])
    if not choices:
        raise UpstreamUnavailable("Reasoning service response did not contain choices")

    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        content = "".join(
            item["text"]
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        )
    elif not isinstance(content, str):
        content = None

    invocations: list[ToolInvocation] = []
    for raw_call in message.get("tool_calls") or []:
        if not isinstance(raw_call, dict) or raw_call.get("type", "function") != "function":
            continue
        function = raw_call.get("function") or {}
        invocations.append(
            ToolInvocation(
                invocation_id=str(raw_call.get("id", "")),
                name=str(function.get("name", "")),
                arguments=function.get("arguments") or "",
            )
        )

    echoed: dict[str, Any] = {"role": "assistant", "content": content}
    if message.get("tool_calls"):
        echoed["tool_calls"] = message["tool_calls"]
    return ChatReply(message=echoed, content=content, tool_calls=invocations)


def _trace_enabled() -> bool:
    return os.getenv("AGENTFLOW_LLM_TRACE", "0").strip() == "1"
