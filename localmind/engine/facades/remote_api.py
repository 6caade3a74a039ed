"""Remote-API backend: hosted chat completion providers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from localmind.clients.cloud import CloudApiClient

from ..catalog import REMOTE_PROVIDERS, split_provider
from ..config import EngineConfig
from ..protocol import CapabilityInfo, Error, Loading, Ready
from ..session import GenerationSession
from ..types import GenerationOptions, Turn
from .base import AsyncTaskFacade

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    def get_token(self, provider: str) -> str | None: ...


ClientFactory = Callable[[str, str, EngineConfig], CloudApiClient]


def _default_client(provider: str, api_key: str, config: EngineConfig) -> CloudApiClient:
    return CloudApiClient(
        provider,
        api_key,
        timeout_s=config.request_timeout_s,
        connect_timeout_s=config.connect_timeout_s,
        anthropic_version=config.anthropic_version,
    )


class RemoteApiFacade(AsyncTaskFacade):
    backend = "remote-api"

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        credentials: CredentialProvider | None = None,
        client_factory: ClientFactory | None = None,
        **_: Any,
    ) -> None:
        super().__init__(config=config)
        self._credentials = credentials
        self._client_factory = client_factory or _default_client
        self._provider: str | None = None
        self._api_model: str | None = None

    @property
    def provider(self) -> str | None:
        return self._provider

    def _token(self, provider: str) -> str | None:
        if self._credentials is None:
            return None
        return self._credentials.get_token(provider)

    async def _run_check(self) -> None:
        if self._provider is not None:
            providers = [self._provider]
        else:
            providers = list(REMOTE_PROVIDERS)
        configured = {p: self._token(p) is not None for p in providers}
        if not any(configured.values()):
            self._emit_check_result(Error(message="No API key configured for any remote provider."))
            return

        if self._provider is not None:
            client = self._client_factory(self._provider, self._token(self._provider) or "", self._config)
            result = await client.test_connection()
            if not result.connected:
                self._emit_check_result(Error(message=f"{self._provider} API not available: {result.error}"))
                return
        self._emit_check_result(CapabilityInfo(data={"type": self.backend, "provider": self._provider, "configured": configured}))

    async def _run_load(self, model_id: str) -> None:
        provider, api_model = split_provider(model_id)
        if provider is None:
            self._broadcast(Error(message=f"Cannot tell which provider serves {model_id!r}; use 'provider/model'."))
            return
        token = self._token(provider)
        if not token:
            self._broadcast(Error(message=f"No API key configured for {provider}. Please check your settings."))
            return

        self._broadcast(Loading(data={"status": "connecting", "file": model_id, "provider": provider}))
        result = await self._client_factory(provider, token, self._config).test_connection()
        if not result.connected:
            self._broadcast(Error(message=f"{provider} API not available: {result.error}"))
            return

        self._provider = provider
        self._api_model = api_model
        self._broadcast(Ready())

    async def _run_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        session = GenerationSession(self._broadcast)
        provider = self._provider or ""
        token = self._token(provider)
        if not token:
            session.fail(f"No API key configured for {provider}. Please check your settings.")
            return
        session.start(0)

        client = self._client_factory(provider, token, self._config)
        stream = client.stream_chat(
            self._api_model or "",
            [t.to_dict() for t in turns],
            temperature=self._config.temperature,
            max_tokens=options.max_tokens,
        )
        interrupted = False
        input_tokens: int | None = None
        output_tokens: int | None = None
        try:
            async for chunk in stream:
                if chunk.input_tokens is not None:
                    input_tokens = int(chunk.input_tokens)
                    session.set_input_tokens(input_tokens)
                if chunk.output_tokens is not None:
                    output_tokens = int(chunk.output_tokens)
                if chunk.content:
                    session.on_text(chunk.content)
                if self._stopping.should_stop():
                    interrupted = True
                    break
        except Exception as exc:
            logger.warning("%s generation failed", provider, exc_info=True)
            session.fail(f"Generation failed: {exc}")
            return
        finally:
            await stream.aclose()

        session.finish(interrupted=interrupted, token_count=output_tokens, input_tokens=input_tokens)
