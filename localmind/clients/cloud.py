"""Async streaming clients for hosted chat APIs (OpenAI, xAI, Anthropic)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Sequence

import httpx

from .http import ConnectionResult, HttpError, error_message, raise_for_status
from .sse import aiter_sse_events

logger = logging.getLogger(__name__)


PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com",
    "xai": "https://api.x.ai",
    "anthropic": "https://api.anthropic.com",
}

PROVIDERS: tuple[str, ...] = tuple(PROVIDER_BASE_URLS)

ANTHROPIC_TEST_MODEL = "claude-3-5-haiku-latest"


@dataclass(frozen=True)
class StreamChunk:
    """Normalized streamed piece: text and/or usage counters reported so far."""

    content: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None


def _split_system(messages: Sequence[dict[str, str]]) -> tuple[str | None, list[dict[str, str]]]:
    system = next((m.get("content") for m in messages if m.get("role") == "system"), None)
    rest = [m for m in messages if m.get("role") != "system"]
    return system, rest


def _is_reasoning_family(model: str) -> bool:
    # o-series reasoning models only accept the default temperature.
    return model.startswith(("o1", "o3", "o4"))


class CloudApiClient:
    def __init__(
        self,
        provider: str,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_s: float = 300.0,
        connect_timeout_s: float = 5.0,
        anthropic_version: str = "2023-06-01",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if provider not in PROVIDER_BASE_URLS:
            raise ValueError(f"Unknown provider: {provider!r}. Available: {', '.join(PROVIDERS)}")
        self.provider = provider
        self.base_url = (base_url or PROVIDER_BASE_URLS[provider]).rstrip("/")
        self.timeout_s = float(timeout_s)
        self.connect_timeout_s = float(connect_timeout_s)
        self.anthropic_version = anthropic_version
        self._api_key = api_key
        self._transport = transport

    def _client(self, timeout_s: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s if timeout_s is None else timeout_s,
            transport=self._transport,
        )

    def _headers(self) -> dict[str, str]:
        if self.provider == "anthropic":
            return {
                "x-api-key": self._api_key,
                "anthropic-version": self.anthropic_version,
                "content-type": "application/json",
            }
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def test_connection(self) -> ConnectionResult:
        if not self._api_key:
            return ConnectionResult(connected=False, error="API key is required")
        logger.debug("Testing %s connection", self.provider)
        try:
            async with self._client(self.connect_timeout_s) as client:
                if self.provider == "anthropic":
                    response = await client.post(
                        "/v1/messages",
                        headers=self._headers(),
                        json={
                            "model": ANTHROPIC_TEST_MODEL,
                            "max_tokens": 1,
                            "messages": [{"role": "user", "content": "test"}],
                        },
                    )
                    # 400 means the key was accepted but the request was not.
                    if response.status_code in (401, 403):
                        return ConnectionResult(
                            connected=False, error=f"HTTP {response.status_code}: {response.text}"
                        )
                    return ConnectionResult(connected=True)

                response = await client.get("/v1/models", headers=self._headers())
                if not response.is_success:
                    return ConnectionResult(connected=False, error=f"HTTP {response.status_code}: {response.text}")
                return ConnectionResult(connected=True)
        except httpx.TimeoutException:
            return ConnectionResult(connected=False, error="Connection timeout")
        except httpx.HTTPError as exc:
            return ConnectionResult(connected=False, error=str(exc))

    def _payload(
        self,
        model: str,
        messages: Sequence[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> tuple[str, dict[str, Any]]:
        system, rest = _split_system(messages)
        if self.provider == "anthropic":
            payload: dict[str, Any] = {
                "model": model,
                "messages": rest,
                "temperature": temperature,
                "max_tokens": int(max_tokens),
                "stream": True,
            }
            if system is not None:
                payload["system"] = system
            return "/v1/messages", payload

        ordered = ([{"role": "system", "content": system}] if system is not None else []) + rest
        return "/v1/chat/completions", {
            "model": model,
            "messages": ordered,
            "temperature": 1 if _is_reasoning_family(model) else temperature,
            "max_completion_tokens": int(max_tokens),
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    async def stream_chat(
        self,
        model: str,
        messages: Sequence[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamChunk]:
        """Yield normalized chunks for one streamed chat completion.

        Raises:
            HttpError: On transport failure, non-2xx status, or a provider error event.
            ValueError: On a malformed event payload.
        """
        path, payload = self._payload(model, messages, temperature=temperature, max_tokens=max_tokens)
        url = f"{self.base_url}{path}"
        try:
            async with self._client() as client:
                async with client.stream("POST", path, headers=self._headers(), json=payload) as response:
                    try:
                        await raise_for_status(response)
                    except HttpError as exc:
                        detail = error_message(exc.body) or exc.body or exc.message
                        raise HttpError(
                            f"{self.provider} API error: {detail}", url=url, status_code=exc.status_code
                        ) from exc
                    async for event_name, data in aiter_sse_events(response.aiter_lines()):
                        if data == "[DONE]":
                            return
                        obj = json.loads(data)
                        if not isinstance(obj, dict):
                            raise ValueError("Stream event payload must be a JSON object")
                        if self.provider == "anthropic":
                            chunk = self._anthropic_chunk(event_name, obj, url)
                        else:
                            chunk = self._openai_chunk(obj, url)
                        if chunk is not None:
                            yield chunk
        except httpx.HTTPError as exc:
            raise HttpError(f"Request failed: {exc}", url=url) from exc

    def _openai_chunk(self, obj: dict[str, Any], url: str) -> StreamChunk | None:
        if obj.get("error"):
            raise HttpError(f"{self.provider} API error: {error_message(obj) or json.dumps(obj)}", url=url)
        content = ""
        choices = obj.get("choices") or []
        if choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta") or {}
            content = delta.get("content") or ""
        usage = obj.get("usage") if isinstance(obj.get("usage"), dict) else None
        if not content and usage is None:
            return None
        return StreamChunk(
            content=content,
            input_tokens=usage.get("prompt_tokens") if usage else None,
            output_tokens=usage.get("completion_tokens") if usage else None,
        )

    def _anthropic_chunk(self, event_name: str | None, obj: dict[str, Any], url: str) -> StreamChunk | None:
        kind = obj.get("type") or event_name
        if kind == "error":
            raise HttpError(f"anthropic API error: {error_message(obj) or json.dumps(obj)}", url=url)
        if kind == "message_start":
            usage = (obj.get("message") or {}).get("usage") or {}
            return StreamChunk(input_tokens=usage.get("input_tokens"))
        if kind == "content_block_delta":
            text = (obj.get("delta") or {}).get("text")
            return StreamChunk(content=text) if text else None
        if kind == "message_delta":
            usage = obj.get("usage") or {}
            if "output_tokens" in usage:
                return StreamChunk(output_tokens=usage.get("output_tokens"))
        return None
