"""Engine commands: `check`, `models` and `ask`.

Each command runs inside one event loop because façades are bound to the loop they
were first used on.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable, TextIO

from apps.cli.output import format_context, format_progress, format_table, print_json
from localmind.clients.http import HttpError
from localmind.clients.ollama import OllamaClient
from localmind.engine.catalog import group_by_context, list_models
from localmind.engine.config import EngineConfig
from localmind.engine.errors import CapabilityError, EngineError, ModelLoadError
from localmind.engine.protocol import (
    CapabilityInfo,
    Error,
    Event,
    Loading,
    Phase,
    Ready,
    Thinking,
    ThinkingDone,
    Update,
)
from localmind.engine.router import BackendRouter
from localmind.engine.types import GenerationOptions, GenerationResult, ModelRef, Turn
from localmind.settings import OLLAMA_URL_KEY, SettingsCredentialProvider, SettingsStore


class EngineCommandError(RuntimeError):
    pass


RouterFactory = Callable[[SettingsStore], BackendRouter]


def build_router(settings: SettingsStore) -> BackendRouter:
    return BackendRouter(
        config=EngineConfig.from_env(),
        settings=settings,
        credentials=SettingsCredentialProvider(settings),
    )


# -----------------------------------------------------------------------------
# Shared async helpers
# -----------------------------------------------------------------------------


async def wait_for_load(
    router: BackendRouter,
    identifier: str,
    *,
    progress: TextIO | None = None,
) -> ModelRef:
    """Start loading `identifier` and wait for `ready`.

    Raises:
        ModelLoadError: If the backend reports an error while loading.
    """
    loop = asyncio.get_running_loop()
    done: asyncio.Future[None] = loop.create_future()

    def _listen(event: Event) -> None:
        if done.done():
            return
        if isinstance(event, Loading):
            if progress is not None:
                print(format_progress(event.data), file=progress)
        elif isinstance(event, Ready):
            done.set_result(None)
        elif isinstance(event, Error):
            done.set_exception(ModelLoadError(event.message))

    unsubscribe = router.on_message(_listen)
    try:
        ref = router.load_model(identifier)
        await done
    finally:
        unsubscribe()
    return ref


async def wait_for_check(router: BackendRouter, kind: str | None = None) -> dict[str, Any]:
    """Check a backend and return its `capabilityInfo` payload.

    Raises:
        CapabilityError: If the check reports an error.
    """
    loop = asyncio.get_running_loop()
    done: asyncio.Future[dict[str, Any]] = loop.create_future()

    def _listen(event: Event) -> None:
        if done.done():
            return
        if isinstance(event, CapabilityInfo):
            done.set_result(dict(event.data))
        elif isinstance(event, Error):
            done.set_exception(CapabilityError(event.message))

    unsubscribe = router.on_message(_listen)
    try:
        router.check(kind)
        return await done
    finally:
        unsubscribe()


class StreamPrinter:
    """Writes answer text to `out` and reasoning (when shown) to `err` as events arrive."""

    def __init__(self, *, show_thinking: bool = False, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self.show_thinking = show_thinking
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.wrote_answer = False

    def __call__(self, event: Event) -> None:
        if isinstance(event, Phase):
            if event.name == "thinking" and not self.show_thinking:
                print("(thinking...)", file=self.err, flush=True)
        elif isinstance(event, Thinking):
            if self.show_thinking:
                self.err.write(event.content)
                self.err.flush()
        elif isinstance(event, ThinkingDone):
            if self.show_thinking:
                self.err.write("\n")
                self.err.flush()
        elif isinstance(event, Update):
            if event.output:
                self.wrote_answer = True
                self.out.write(event.output)
                self.out.flush()


def format_metrics(result: GenerationResult) -> str:
    parts: list[str] = []
    if result.tokens_per_second is not None:
        parts.append(f"tok/s={result.tokens_per_second:.2f}")
    parts.append(f"tokens={result.input_tokens}+{result.token_count}")
    return " ".join(parts)


async def run_turn(
    router: BackendRouter,
    turns: list[Turn],
    options: GenerationOptions,
    printer: StreamPrinter,
) -> GenerationResult:
    unsubscribe = router.on_message(printer)
    try:
        result = await router.generate_full(turns, options)
    finally:
        unsubscribe()
    if printer.wrote_answer:
        printer.out.write("\n")
        printer.out.flush()
    return result


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def engine_check(
    *,
    settings: SettingsStore,
    backend: str | None = None,
    json_output: bool = False,
    router_factory: RouterFactory = build_router,
) -> int:
    async def _run() -> dict[str, Any]:
        router = router_factory(settings)
        try:
            return await wait_for_check(router, backend)
        finally:
            router.terminate()

    try:
        info = asyncio.run(_run())
    except (CapabilityError, ValueError) as exc:
        raise EngineCommandError(f"Check failed: {exc}") from exc

    if json_output:
        print_json(info)
        return 0
    for key, value in info.items():
        print(f"{key}={value}")
    return 0


def models_ls(
    *,
    settings: SettingsStore,
    backend: str | None = None,
    installed: bool = False,
    recommended_only: bool = False,
    json_output: bool = False,
) -> int:
    if installed:
        return _installed_ls(settings=settings, json_output=json_output)

    try:
        cards = list_models(backend, recommended_only=recommended_only)
    except ValueError as exc:
        raise EngineCommandError(str(exc)) from exc

    if json_output:
        print_json([c.to_dict() for c in cards])
        return 0
    if not cards:
        print("No models.")
        return 0

    for bucket, group in group_by_context(cards).items():
        print(f"[{bucket} context]")
        rows = [
            [
                c.model_id,
                c.kind,
                format_context(c.context_length),
                c.size or "-",
                c.description,
            ]
            for c in group
        ]
        print(format_table(["ID", "BACKEND", "CONTEXT", "SIZE", "DESCRIPTION"], rows))
        print()
    return 0


def _installed_ls(*, settings: SettingsStore, json_output: bool) -> int:
    config = EngineConfig.from_env()
    url = settings.get(OLLAMA_URL_KEY) or config.local_server_url
    client = OllamaClient(str(url), timeout_s=config.request_timeout_s, connect_timeout_s=config.connect_timeout_s)
    try:
        models = asyncio.run(client.list_models())
    except HttpError as exc:
        raise EngineCommandError(f"Failed to list models on {url}: {exc.message}") from exc

    if json_output:
        print_json(models)
        return 0
    if not models:
        print(f"No models installed on {url}.")
        return 0
    rows = []
    for m in models:
        size = m.get("size")
        rows.append(
            [
                str(m.get("name") or ""),
                f"{size / 1e9:.1f} GB" if isinstance(size, (int, float)) else "-",
                str(m.get("modified_at") or ""),
            ]
        )
    print(format_table(["NAME", "SIZE", "MODIFIED"], rows))
    return 0


def ask(
    *,
    settings: SettingsStore,
    model: str,
    prompt: str,
    system: str | None = None,
    max_tokens: int = 4096,
    enable_thinking: bool = True,
    show_thinking: bool = False,
    show_metrics: bool = True,
    router_factory: RouterFactory = build_router,
) -> int:
    turns: list[Turn] = []
    if system:
        turns.append(Turn("system", system))
    turns.append(Turn("user", prompt))
    options = GenerationOptions(max_tokens=max_tokens, enable_thinking=enable_thinking)

    async def _run() -> GenerationResult:
        router = router_factory(settings)
        try:
            await wait_for_load(router, model, progress=sys.stderr)
            return await run_turn(router, turns, options, StreamPrinter(show_thinking=show_thinking))
        finally:
            router.terminate()

    try:
        result = asyncio.run(_run())
    except (EngineError, ValueError) as exc:
        raise EngineCommandError(str(exc)) from exc

    if show_metrics:
        print(format_metrics(result), file=sys.stderr)
    return 0
