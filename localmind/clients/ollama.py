"""Async client for an Ollama-compatible local inference server."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Callable, Sequence

import httpx

from .http import ConnectionResult, HttpError, aiter_ndjson, error_message, raise_for_status

logger = logging.getLogger(__name__)


DEFAULT_URL = "http://localhost:11434"


class OllamaClient:
    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        *,
        timeout_s: float = 300.0,
        connect_timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.connect_timeout_s = float(connect_timeout_s)
        self._transport = transport

    def _client(self, timeout_s: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s if timeout_s is None else timeout_s,
            transport=self._transport,
        )

    async def _get_json(self, path: str, *, timeout_s: float | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._client(timeout_s) as client:
                response = await client.get(path)
                await raise_for_status(response)
                return response.json()
        except httpx.TimeoutException as exc:
            raise HttpError("Connection timeout", url=url) from exc
        except httpx.HTTPError as exc:
            raise HttpError(f"Request failed: {exc}", url=url) from exc
        except ValueError as exc:
            raise HttpError("Invalid JSON response", url=url) from exc

    async def version(self) -> str:
        data = await self._get_json("/api/version", timeout_s=self.connect_timeout_s)
        if not isinstance(data, dict):
            raise HttpError("Unexpected /api/version response", url=f"{self.base_url}/api/version")
        return str(data.get("version") or "")

    async def test_connection(self) -> ConnectionResult:
        logger.debug("Testing local server connection at %s", self.base_url)
        try:
            return ConnectionResult(connected=True, version=await self.version())
        except HttpError as exc:
            return ConnectionResult(connected=False, error=exc.message)

    async def list_models(self) -> list[dict[str, Any]]:
        data = await self._get_json("/api/tags", timeout_s=10.0)
        models = data.get("models") if isinstance(data, dict) else None
        return [m for m in (models or []) if isinstance(m, dict)]

    async def pull_model(
        self,
        name: str,
        on_progress: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        """Download `name` onto the server, reporting each NDJSON progress record."""
        url = f"{self.base_url}/api/pull"
        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/pull", json={"name": name, "stream": True}) as response:
                    await raise_for_status(response)
                    async for record in aiter_ndjson(response.aiter_lines()):
                        if record.get("error"):
                            raise HttpError(f"Pull failed: {record['error']}", url=url)
                        if on_progress is not None:
                            on_progress(record)
        except httpx.HTTPError as exc:
            raise HttpError(f"Pull failed: {exc}", url=url) from exc

    async def stream_chat(
        self,
        model: str,
        messages: Sequence[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        think: bool | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield raw `/api/chat` chunks until the one with `done: true`.

        Raises:
            HttpError: On transport failure, non-2xx status, or a server-reported error chunk.
            ValueError: On a malformed chunk.
        """
        url = f"{self.base_url}/api/chat"
        payload: dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "stream": True,
            "options": {"temperature": temperature, "num_predict": int(max_tokens)},
        }
        if think is not None:
            payload["think"] = bool(think)

        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    try:
                        await raise_for_status(response)
                    except HttpError as exc:
                        detail = error_message(exc.body) or exc.body or exc.message
                        raise HttpError(f"Local server error: {detail}", url=url, status_code=exc.status_code) from exc
                    async for chunk in aiter_ndjson(response.aiter_lines()):
                        if chunk.get("error"):
                            raise HttpError(f"Local server error: {chunk['error']}", url=url)
                        yield chunk
                        if chunk.get("done"):
                            return
        except httpx.HTTPError as exc:
            raise HttpError(f"Request failed: {exc}", url=url) from exc
