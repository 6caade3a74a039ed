"""FastAPI bridge exposing a `BackendRouter` over HTTP.

Streaming endpoints relay the engine's wire events verbatim as Server-Sent Events, one
envelope per `data:` line, terminated by `data: [DONE]`.

The HTTP layer lives under `apps/` and can depend on heavier deps (FastAPI, uvicorn).
All model execution is delegated to the engine (`localmind/engine`).
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import JSONResponse, StreamingResponse

from localmind._version import __version__
from localmind.engine.catalog import list_models as catalog_models
from localmind.engine.errors import (
    EngineStateError,
    GenerationError,
    NoActiveEngineError,
    ProtocolError,
)
from localmind.engine.protocol import (
    CapabilityInfo,
    Error,
    Event,
    Ready,
    decode_options,
    encode_event,
    is_terminal,
)
from localmind.engine.router import BackendRouter
from localmind.engine.types import GenerationRequest, Turn

logger = logging.getLogger(__name__)


def create_app(
    *,
    router: BackendRouter,
    http_max_completion_tokens: int | None = None,
    startup_model: str | None = None,
    disconnect_poll_s: float = 0.25,
) -> FastAPI:
    if http_max_completion_tokens is not None:
        http_max_completion_tokens = int(http_max_completion_tokens)
        if http_max_completion_tokens <= 0:
            raise ValueError("http_max_completion_tokens must be > 0")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        # Façades bind to the serving loop, so the startup load is issued from here.
        if startup_model:
            logger.info("Loading %s at startup", startup_model)
            router.load_model(startup_model)
        try:
            yield
        finally:
            router.terminate()

    app = FastAPI(title="localmind bridge", version=__version__, lifespan=lifespan)

    def _subscribe() -> tuple[asyncio.Queue, Callable[[], None]]:
        queue: asyncio.Queue[Event] = asyncio.Queue()
        return queue, router.on_message(queue.put_nowait)

    async def _await_event(queue: asyncio.Queue, done: Callable[[Event], bool]) -> Event:
        while True:
            event = await queue.get()
            if done(event):
                return event

    async def _relay(
        queue: asyncio.Queue,
        unsubscribe: Callable[[], None],
        request: Request,
        *,
        done: Callable[[Event], bool],
        on_disconnect: Callable[[], None] | None = None,
    ) -> AsyncIterator[str]:
        finished = False
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=disconnect_poll_s)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        return
                    continue
                yield _sse(json.dumps(encode_event(event), ensure_ascii=False))
                if done(event):
                    finished = True
                    break
                # If the client disconnects mid-stream, stop consuming promptly.
                if await request.is_disconnected():
                    return
            yield "data: [DONE]\n\n"
        finally:
            unsubscribe()
            if not finished and on_disconnect is not None:
                logger.info("Client disconnected before the stream finished")
                try:
                    on_disconnect()
                except EngineStateError:
                    pass

    async def _run_with_disconnect_cancellation(request: Request, coro: Any) -> Any:
        task = asyncio.create_task(coro)
        disconnect_task = asyncio.create_task(_wait_for_disconnect(request, disconnect_poll_s))
        done, _ = await asyncio.wait({task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED)
        if disconnect_task in done:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise HTTPException(status_code=499, detail="Client disconnected")

        disconnect_task.cancel()
        try:
            await disconnect_task
        except asyncio.CancelledError:
            pass
        return task.result()

    async def _json_dict_or_empty(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError:
            return {}
        if isinstance(payload, dict):
            return payload
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    # -------------------------------------------------------------------------
    # Health & Models
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/models")
    async def list_models(backend: str | None = None, recommended: bool = False) -> dict[str, Any]:
        try:
            cards = catalog_models(backend, recommended_only=recommended)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"object": "list", "data": [c.to_dict() for c in cards]}

    # -------------------------------------------------------------------------
    # Engine lifecycle
    # -------------------------------------------------------------------------

    @app.post("/v1/engine/check")
    async def engine_check(request: Request) -> JSONResponse:
        payload = await _json_dict_or_empty(request)
        backend = payload.get("backend")
        if backend is not None and not isinstance(backend, str):
            raise HTTPException(status_code=400, detail="'backend' must be a string.")

        queue, unsubscribe = _subscribe()
        try:
            try:
                router.check(backend)
            except EngineStateError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            event = await _run_with_disconnect_cancellation(
                request, _await_event(queue, lambda e: isinstance(e, (CapabilityInfo, Error)))
            )
        finally:
            unsubscribe()

        if isinstance(event, Error):
            raise HTTPException(status_code=503, detail=event.message)
        return JSONResponse({"backend": router.backend, "data": event.data})

    @app.post("/v1/engine/load")
    async def engine_load(request: Request) -> Any:
        payload = await _json_dict_or_empty(request)
        model = payload.get("model")
        if not isinstance(model, str) or not model.strip():
            raise HTTPException(status_code=400, detail="'model' is required and must be a string.")
        stream = payload.get("stream", True)
        if not isinstance(stream, bool):
            raise HTTPException(status_code=400, detail="'stream' must be a boolean.")

        queue, unsubscribe = _subscribe()
        try:
            ref = router.load_model(model)
        except EngineStateError as exc:
            unsubscribe()
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            unsubscribe()
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        def _load_done(event: Event) -> bool:
            return isinstance(event, (Ready, Error))

        if stream:
            return StreamingResponse(
                _relay(queue, unsubscribe, request, done=_load_done),
                media_type="text/event-stream",
            )

        try:
            event = await _run_with_disconnect_cancellation(request, _await_event(queue, _load_done))
        finally:
            unsubscribe()
        if isinstance(event, Error):
            raise HTTPException(status_code=502, detail=event.message)
        return JSONResponse({"status": "ready", "backend": ref.kind, "modelId": ref.model_id})

    @app.get("/v1/engine/status")
    async def engine_status() -> dict[str, Any]:
        try:
            return router.get_model_info()
        except NoActiveEngineError:
            return {"backend": None, "modelId": None, "status": "idle", "card": None}

    @app.post("/v1/engine/interrupt")
    async def engine_interrupt() -> dict[str, str]:
        try:
            router.interrupt()
        except NoActiveEngineError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"status": "ok"}

    @app.post("/v1/engine/reset")
    async def engine_reset() -> dict[str, str]:
        try:
            router.reset()
        except NoActiveEngineError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"status": "ok"}

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    @app.post("/v1/chat")
    async def chat(request: Request) -> Any:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON body.") from exc
        gen = _parse_chat_request(payload, http_max_completion_tokens=http_max_completion_tokens)
        stream = payload.get("stream", True)
        if not isinstance(stream, bool):
            raise HTTPException(status_code=400, detail="'stream' must be a boolean.")

        if not stream:
            try:
                result = await _run_with_disconnect_cancellation(request, router.generate_full(gen.turns, gen.options))
            except EngineStateError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            except GenerationError as exc:
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            return JSONResponse(result.to_dict())

        queue, unsubscribe = _subscribe()
        try:
            router.generate(gen.turns, gen.options)
        except EngineStateError as exc:
            unsubscribe()
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        return StreamingResponse(
            _relay(queue, unsubscribe, request, done=is_terminal, on_disconnect=router.interrupt),
            media_type="text/event-stream",
        )

    return app


async def _wait_for_disconnect(request: Request, poll_s: float = 0.1) -> None:
    while True:
        if await request.is_disconnected():
            return
        await asyncio.sleep(poll_s)


def _sse(data: str) -> str:
    return f"data: {data}\n\n"


def _parse_chat_request(
    payload: Any,
    *,
    http_max_completion_tokens: int | None = None,
) -> GenerationRequest:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list) or not raw_messages:
        raise HTTPException(status_code=400, detail="'messages' must be a non-empty list.")

    turns: list[Turn] = []
    for msg in raw_messages:
        if not isinstance(msg, dict):
            raise HTTPException(status_code=400, detail="Each message must be an object.")
        try:
            turns.append(Turn.from_dict(msg))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        options = decode_options(payload.get("options"))
    except ProtocolError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if http_max_completion_tokens is not None and options.max_tokens > http_max_completion_tokens:
        options = replace(options, max_tokens=http_max_completion_tokens)
    return GenerationRequest(turns=turns, options=options)
