"""Accelerator backend: a model resident in this process, driven by a worker thread."""

from __future__ import annotations

import asyncio
import collections
import logging
from typing import Any, Callable

from ..adapters.base import BaseAdapter
from ..config import EngineConfig
from ..protocol import (
    CapabilityInfo,
    Check,
    Complete,
    Error,
    Event,
    Generate,
    Interrupt,
    Load,
    Ready,
    Reset,
    decode_event,
    encode_command,
)
from ..types import GenerationOptions, Turn
from ..worker import InferenceWorker
from .base import EngineFacade

logger = logging.getLogger(__name__)


# Events that end each queued command; the worker answers commands in post order.
_TERMINAL_EVENTS: dict[str, tuple[type, ...]] = {
    "check": (CapabilityInfo, Error),
    "load": (Ready, Error),
    "generate": (Complete, Error),
}


def _default_adapter(config: EngineConfig) -> BaseAdapter:
    from ..adapters.transformers import TransformersAdapter

    return TransformersAdapter(device=config.device, dtype=config.dtype)


class AcceleratorFacade(EngineFacade):
    """Talks to an `InferenceWorker` purely through encoded channel envelopes.

    The worker is created lazily on the first operation and bound to the running
    event loop; its events are marshalled back onto that loop before they touch
    façade state.
    """

    backend = "accelerator"

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        adapter_factory: Callable[[EngineConfig], BaseAdapter] | None = None,
        **_: Any,
    ) -> None:
        super().__init__(config=config)
        self._adapter_factory = adapter_factory or _default_adapter
        self._worker: InferenceWorker | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: collections.deque[str] = collections.deque()

    @property
    def worker(self) -> InferenceWorker | None:
        return self._worker

    def _ensure_worker(self) -> InferenceWorker:
        if self._worker is None:
            self._loop = asyncio.get_running_loop()
            adapter = self._adapter_factory(self._config)
            self._worker = InferenceWorker(adapter, self._receive_from_worker)
            self._worker.start()
        return self._worker

    def _receive_from_worker(self, raw: dict[str, Any]) -> None:
        # Called on the worker thread.
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Dropping worker event; event loop is gone")
            return
        try:
            loop.call_soon_threadsafe(self._handle_raw_event, raw)
        except RuntimeError:
            logger.debug("Dropping worker event; event loop is closed")

    def _handle_raw_event(self, raw: dict[str, Any]) -> None:
        event: Event | None = decode_event(raw)
        if event is None:
            return
        owner = self._pending[0] if self._pending else None
        self._broadcast(event, check_result=owner == "check")
        if owner is not None and isinstance(event, _TERMINAL_EVENTS[owner]):
            self._pending.popleft()

    def _post(self, kind: str, raw: dict[str, Any]) -> None:
        worker = self._ensure_worker()
        self._pending.append(kind)
        worker.post(raw)

    def _start_check(self) -> None:
        self._post("check", encode_command(Check()))

    def _start_load(self, model_id: str) -> None:
        self._post("load", encode_command(Load(model_id=model_id)))

    def _start_generate(self, turns: list[Turn], options: GenerationOptions) -> None:
        self._post("generate", encode_command(Generate(turns=turns, options=options)))

    def interrupt(self) -> None:
        if self._worker is not None:
            self._worker.post(encode_command(Interrupt()))

    def reset(self) -> None:
        if self._worker is not None:
            self._worker.post(encode_command(Reset()))

    def _shutdown(self) -> None:
        if self._worker is not None:
            self._worker.terminate(timeout=self._config.worker_join_timeout_s)
            self._worker = None
        self._pending.clear()
