"""Local-server backend: an Ollama-compatible HTTP server on this machine or LAN."""

from __future__ import annotations

import logging
from typing import Any, Callable

from localmind.clients.ollama import OllamaClient
from localmind.settings import OLLAMA_URL_KEY, SettingsStore

from ..catalog import match_local_model
from ..config import EngineConfig
from ..phase import THINK_CLOSE, THINK_OPEN
from ..protocol import CapabilityInfo, Error, Loading, Ready
from ..session import GenerationSession
from ..types import GenerationOptions, Turn
from .base import AsyncTaskFacade

logger = logging.getLogger(__name__)


ClientFactory = Callable[[str, EngineConfig], OllamaClient]


def _default_client(url: str, config: EngineConfig) -> OllamaClient:
    return OllamaClient(
        url,
        timeout_s=config.request_timeout_s,
        connect_timeout_s=config.connect_timeout_s,
    )


def _pull_progress(model_id: str, record: dict[str, Any]) -> dict[str, Any]:
    data: dict[str, Any] = {"status": record.get("status") or "pulling", "file": model_id}
    total = record.get("total")
    completed = record.get("completed")
    if isinstance(total, (int, float)) and total > 0 and isinstance(completed, (int, float)):
        data["loaded"] = completed
        data["total"] = total
        data["progress"] = round(completed / total * 100.0, 1)
    return data


class LocalServerFacade(AsyncTaskFacade):
    backend = "local-server"

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        settings: SettingsStore | None = None,
        client_factory: ClientFactory | None = None,
        **_: Any,
    ) -> None:
        super().__init__(config=config)
        self._settings = settings
        self._client_factory = client_factory or _default_client
        self._served_name: str | None = None

    @property
    def server_url(self) -> str:
        if self._settings is not None:
            url = self._settings.get(OLLAMA_URL_KEY)
            if isinstance(url, str) and url.strip():
                return url.strip()
        return self._config.local_server_url

    def _client(self) -> OllamaClient:
        return self._client_factory(self.server_url, self._config)

    async def _run_check(self) -> None:
        url = self.server_url
        result = await self._client().test_connection()
        if result.connected:
            self._emit_check_result(CapabilityInfo(data={"type": self.backend, "version": result.version, "url": url}))
        else:
            self._emit_check_result(Error(message=f"Local server not available at {url}: {result.error}. Make sure it is running."))

    async def _run_load(self, model_id: str) -> None:
        client = self._client()
        self._broadcast(Loading(data={"status": "connecting", "file": model_id, "url": self.server_url}))

        result = await client.test_connection()
        if not result.connected:
            self._broadcast(Error(message=f"Local server not available: {result.error}"))
            return

        installed = [str(m.get("name") or m.get("model") or "") for m in await client.list_models()]
        served = match_local_model(model_id, installed)
        if served is None:
            if not self._config.auto_pull:
                self._broadcast(Error(message=f"Model {model_id!r} is not installed on the local server."))
                return
            logger.info("Pulling %s from the local server registry", model_id)
            await client.pull_model(
                model_id,
                on_progress=lambda record: self._broadcast(Loading(data=_pull_progress(model_id, record))),
            )
            served = model_id

        self._served_name = served
        self._broadcast(Ready())

    async def _run_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        session = GenerationSession(self._broadcast)
        session.start(0)

        stream = self._client().stream_chat(
            self._served_name or self._model_id or "",
            [t.to_dict() for t in turns],
            temperature=self._config.temperature,
            max_tokens=options.max_tokens,
            think=None if options.enable_thinking else False,
        )
        interrupted = False
        final: dict[str, Any] = {}
        reasoning_open = False
        try:
            async for chunk in stream:
                message = chunk.get("message") or {}
                delta = ""
                # Servers that split reasoning out of `content` get it folded back in
                # between delimiters so phase detection sees one uniform stream.
                reasoning = message.get("thinking") or ""
                if reasoning:
                    if not reasoning_open:
                        delta += THINK_OPEN
                        reasoning_open = True
                    delta += reasoning
                content = message.get("content") or ""
                if content:
                    if reasoning_open:
                        delta += THINK_CLOSE
                        reasoning_open = False
                    delta += content
                if delta:
                    session.on_text(delta)
                if chunk.get("done"):
                    final = chunk
                    break
                if self._stopping.should_stop():
                    interrupted = True
                    break
        except Exception as exc:
            logger.warning("Local server generation failed", exc_info=True)
            session.fail(f"Generation failed: {exc}")
            return
        finally:
            await stream.aclose()

        eval_count = final.get("eval_count")
        eval_duration = final.get("eval_duration")
        tokens_per_second = None
        if eval_count and eval_duration:
            tokens_per_second = round(eval_count / (eval_duration / 1e9), 1)
        session.finish(
            interrupted=interrupted,
            token_count=eval_count or None,
            tokens_per_second=tokens_per_second,
            input_tokens=final.get("prompt_eval_count"),
        )
