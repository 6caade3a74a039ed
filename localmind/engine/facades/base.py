"""Uniform engine contract implemented by every backend.

A façade owns one authoritative `EngineStatus`. Operations that cross a boundary
(`check`, `load_model`, `generate`) only schedule work and return immediately; progress
is observed exclusively through events delivered to `on_message` listeners on the
event loop that issued the operation.

Status edges:

    idle --load_model--> loading --ready--> ready --generate--> generating
    loading --error--> idle
    generating --complete|error--> ready
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, ClassVar, Sequence

from ..config import EngineConfig
from ..errors import EngineBusyError, EngineNotReadyError, GenerationError
from ..protocol import Complete, Error, Event, Ready, Update
from ..stopping import StoppingController
from ..subscribers import SubscriberSet
from ..types import (
    EngineStatus,
    GenerationOptions,
    GenerationResult,
    TokenProgress,
    Turn,
)

logger = logging.getLogger(__name__)


Listener = Callable[[Event], None]


class EngineFacade(ABC):
    backend: ClassVar[str] = ""

    def __init__(self, *, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._stopping = StoppingController()
        self._listeners: SubscriberSet[Event] = SubscriberSet()
        self._status = EngineStatus.IDLE
        self._model_id: str | None = None
        self._terminated = False
        self._delivering_check_result = False

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is EngineStatus.READY

    @property
    def is_generating(self) -> bool:
        return self._status is EngineStatus.GENERATING

    @property
    def model_id(self) -> str | None:
        return self._model_id

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def terminated(self) -> bool:
        return self._terminated

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on_message(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to events; returns a callable that unsubscribes."""
        self._listeners.add(listener)
        return lambda: self.off_message(listener)

    def off_message(self, listener: Listener) -> None:
        self._listeners.discard(listener)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def check(self) -> None:
        """Check backend capability; emits exactly one `capabilityInfo` or `error`."""
        self._start_check()

    def load_model(self, model_id: str) -> None:
        """Start loading `model_id`; status is `loading` when this returns."""
        if self._status in (EngineStatus.LOADING, EngineStatus.GENERATING):
            raise EngineBusyError(f"Cannot load a model while {self._status.value}.")
        self._status = EngineStatus.LOADING
        self._model_id = model_id
        self._start_load(model_id)

    def generate(self, turns: Sequence[Turn], options: GenerationOptions | None = None) -> None:
        """Start one generation session; requires status `ready`."""
        if self._status is EngineStatus.GENERATING:
            raise EngineBusyError("A generation is already in progress.")
        if self._status is not EngineStatus.READY:
            raise EngineNotReadyError(f"Engine is {self._status.value}; load a model first.")
        self._status = EngineStatus.GENERATING
        self._start_generate(list(turns), options or GenerationOptions())

    async def generate_full(
        self,
        turns: Sequence[Turn],
        options: GenerationOptions | None = None,
        on_token: Callable[[TokenProgress], None] | None = None,
    ) -> GenerationResult:
        """Run `generate` and collect the answer text.

        Raises:
            GenerationError: If the session ends with an `error` event.
            EngineStateError: If the engine cannot start a generation now.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[GenerationResult] = loop.create_future()
        parts: list[str] = []

        def _collect(event: Event) -> None:
            if future.done() or self._delivering_check_result:
                return
            if isinstance(event, Update):
                parts.append(event.output)
                if on_token is not None:
                    try:
                        on_token(TokenProgress(event.tokens_per_second, event.token_count))
                    except Exception:
                        logger.warning("on_token callback raised", exc_info=True)
            elif isinstance(event, Complete):
                future.set_result(
                    GenerationResult(
                        text="".join(parts),
                        tokens_per_second=event.tokens_per_second,
                        token_count=event.token_count,
                        input_tokens=event.input_tokens,
                    )
                )
            elif isinstance(event, Error):
                future.set_exception(GenerationError(event.message))

        self.on_message(_collect)
        try:
            self.generate(turns, options)
            return await future
        except asyncio.CancelledError:
            self.interrupt()
            raise
        finally:
            self.off_message(_collect)

    def interrupt(self) -> None:
        """Ask the in-flight generation to stop; a no-op when idle."""
        self._stopping.interrupt()

    def reset(self) -> None:
        self._stopping.reset()

    def terminate(self) -> None:
        """Dispose the backend; events produced afterwards are dropped."""
        if self._terminated:
            return
        self._terminated = True
        self._stopping.interrupt()
        try:
            self._shutdown()
        finally:
            self._status = EngineStatus.IDLE
            self._model_id = None
            self._listeners.clear()

    # -------------------------------------------------------------------------
    # Event delivery
    # -------------------------------------------------------------------------

    def _broadcast(self, event: Event, *, check_result: bool = False) -> None:
        """Apply the status transition for `event`, then notify listeners.

        Results of `check()` (`check_result=True`) never move the status machine, so a
        failed capability check cannot end a load or a generation it overlaps with.
        """
        if self._terminated:
            logger.debug("Dropping %s event after terminate", event.status)
            return
        if not check_result:
            self._apply_transition(event)
        previous, self._delivering_check_result = self._delivering_check_result, check_result
        try:
            for listener in self._listeners.snapshot():
                try:
                    listener(event)
                except Exception:
                    logger.warning("Listener raised while handling %s", event.status, exc_info=True)
        finally:
            self._delivering_check_result = previous

    def _emit_check_result(self, event: Event) -> None:
        self._broadcast(event, check_result=True)

    def _apply_transition(self, event: Event) -> None:
        if isinstance(event, Ready):
            if self._status is EngineStatus.LOADING:
                self._status = EngineStatus.READY
        elif isinstance(event, Error):
            if self._status is EngineStatus.LOADING:
                self._status = EngineStatus.IDLE
                self._model_id = None
            elif self._status is EngineStatus.GENERATING:
                self._status = EngineStatus.READY
        elif isinstance(event, Complete):
            if self._status is EngineStatus.GENERATING:
                self._status = EngineStatus.READY

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _start_check(self) -> None:
        pass

    @abstractmethod
    def _start_load(self, model_id: str) -> None:
        pass

    @abstractmethod
    def _start_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        pass

    def _shutdown(self) -> None:
        pass


class AsyncTaskFacade(EngineFacade):
    """Base for façades whose transport is an asyncio stream (no worker thread)."""

    def __init__(self, *, config: EngineConfig | None = None) -> None:
        super().__init__(config=config)
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _start_check(self) -> None:
        self._spawn(self._guarded(self._run_check(), "Capability check failed", check_result=True))

    def _start_load(self, model_id: str) -> None:
        self._spawn(self._guarded(self._run_load(model_id), f"Failed to load {model_id}"))

    def _start_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        self._stopping.reset()
        self._spawn(self._run_generate(turns, options))

    async def _guarded(self, coro, prefix: str, *, check_result: bool = False) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("%s", prefix, exc_info=True)
            self._broadcast(Error(message=f"{prefix}: {exc}"), check_result=check_result)

    def _shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    @abstractmethod
    async def _run_check(self) -> None:
        pass

    @abstractmethod
    async def _run_load(self, model_id: str) -> None:
        pass

    @abstractmethod
    async def _run_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        pass
