"""Async client for an OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from .config import settings
from .errors import AIInvocationError
from .retry import with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AICompletion:
    text: str
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


def _is_transient(exc: Exception) -> bool:
    return isinstance(exc, AIInvocationError) and exc.transient


def _extract_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message") if isinstance(first.get("message"), dict) else {}
    content = message.get("content")
    return content.strip() if isinstance(content, str) else ""


def _extract_usage(payload: Any) -> dict[str, Any]:
    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return {}
    input_tokens = usage.get("prompt_tokens") or usage.get("input_tokens")
    output_tokens = usage.get("completion_tokens") or usage.get("output_tokens")
    return {
        "input_tokens": int(input_tokens) if isinstance(input_tokens, (int, float)) else None,
        "output_tokens": int(output_tokens) if isinstance(output_tokens, (int, float)) else None,
    }


class AIReviewClient:
    """Sends one chat completion per review, retrying only transient failures."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.model = model or settings.ai_model
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self._max_attempts = max_attempts or settings.ai_max_attempts
        self._backoff_base = settings.ai_backoff_base if backoff_base is None else backoff_base
        self._sleep = sleep

        headers = {"Content-Type": "application/json"}
        key = settings.ai_api_key if api_key is None else api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.ai_api_url).rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds or settings.ai_timeout),
            transport=transport,
            headers=headers,
        )

    async def __aenter__(self) -> AIReviewClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _complete_once(self, body: dict[str, Any]) -> AICompletion:
        try:
            resp = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise AIInvocationError("AI request timed out", transient=True) from e
        except httpx.RequestError as e:
            raise AIInvocationError(f"AI request failed: {e}", transient=True) from e

        status = resp.status_code
        if status == 429 or status >= 500:
            raise AIInvocationError(
                f"AI provider error {status}", transient=True, status_code=status
            )
        if status >= 400:
            raise AIInvocationError(
                f"AI provider rejected request {status}: {resp.text[:200]}",
                transient=False,
                status_code=status,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise AIInvocationError(
                f"Invalid JSON response from AI provider: {resp.text[:200]}", transient=True
            ) from e

        text = _extract_text(payload)
        if not text:
            logger.warning("AI provider returned an empty completion")
        usage = _extract_usage(payload)
        model = payload.get("model") if isinstance(payload, dict) else None
        return AICompletion(
            text=text,
            model=model if isinstance(model, str) else self.model,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )

    async def complete(self, messages: list[dict[str, str]]) -> AICompletion:
        body = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        return await with_backoff(
            lambda: self._complete_once(body),
            attempts=self._max_attempts,
            base_delay=self._backoff_base,
            is_retryable=_is_transient,
            label="AI completion",
            sleep=self._sleep,
        )
