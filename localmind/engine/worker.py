"""Thread side of the accelerator channel.

The worker owns the `ModelResident` and is reached only through encoded command
envelopes; it answers with encoded event envelopes through `outbox`. Commands are
processed one at a time on the worker thread, except `interrupt` and `reset`, which
touch only the stopping controller and take effect immediately so they can reach a
generation that is already running.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Any, Callable

from .adapters.base import BaseAdapter
from .errors import ModelLoadError, ProtocolError
from .protocol import (
    CapabilityInfo,
    Check,
    Command,
    CommandDispatcher,
    Error,
    Event,
    Generate,
    Interrupt,
    Load,
    Loading,
    Ready,
    Reset,
    decode_command,
    encode_event,
)
from .resident import ModelResident
from .session import GenerationSession
from .stopping import StoppingController

logger = logging.getLogger(__name__)


Outbox = Callable[[dict[str, Any]], None]


class InferenceWorker:
    def __init__(
        self,
        adapter: BaseAdapter,
        outbox: Outbox,
        *,
        stopping: StoppingController | None = None,
    ) -> None:
        self._resident = ModelResident(adapter)
        self._outbox = outbox
        self._stopping = stopping or StoppingController()
        self._inbox: queue.Queue[Command | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._terminated = False

        self._dispatcher = CommandDispatcher()
        self._dispatcher.register(Check, self._handle_check)
        self._dispatcher.register(Load, self._handle_load)
        self._dispatcher.register(Generate, self._handle_generate)

    @property
    def resident(self) -> ModelResident:
        return self._resident

    @property
    def stopping(self) -> StoppingController:
        return self._stopping

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"localmind-worker-{uuid.uuid4().hex}",
            daemon=True,
        )
        self._thread.start()

    def post(self, raw: dict[str, Any]) -> None:
        """Deliver one encoded command envelope to the worker."""
        if self._terminated:
            logger.debug("Dropping command posted after terminate: %r", raw)
            return
        try:
            command = decode_command(raw)
        except ProtocolError as exc:
            logger.warning("Rejected command envelope: %s", exc)
            self._send(Error(message=f"Invalid command: {exc}"))
            return

        if isinstance(command, Interrupt):
            self._stopping.interrupt()
            return
        if isinstance(command, Reset):
            self._stopping.reset()
            return
        if isinstance(command, Generate):
            # A fresh session must never observe an interrupt aimed at the previous one.
            self._stopping.reset()

        self.start()
        self._inbox.put(command)

    def terminate(self, *, timeout: float | None = None) -> None:
        """Stop the worker and wait for it to release the resident model.

        Any running generation is interrupted first. The resident is released on the
        worker thread; this blocks until that has happened, or until `timeout` elapses.
        """
        if self._terminated:
            return
        self._terminated = True
        self._stopping.interrupt()
        if self._thread is None:
            self._resident.release()
            return
        self._inbox.put(None)
        if self._thread is threading.current_thread():
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Worker did not stop within %ss; the model may still be resident", timeout)

    # -------------------------------------------------------------------------
    # Worker thread
    # -------------------------------------------------------------------------

    def _run(self) -> None:
        try:
            while True:
                command = self._inbox.get()
                if command is None:
                    break
                logger.debug("Worker received %s", command.type)
                self._dispatcher.dispatch(command)
        finally:
            self._resident.release()

    def _send(self, event: Event) -> None:
        try:
            self._outbox(encode_event(event))
        except Exception:
            logger.warning("Failed to deliver %s event", event.status, exc_info=True)

    def _handle_check(self, command: Check) -> None:
        adapter = self._resident.adapter
        try:
            if not adapter.has_capability():
                self._send(Error(message="No accelerator available on this machine."))
                return
            self._send(CapabilityInfo(data=adapter.describe_capability()))
        except Exception as exc:
            self._send(Error(message=f"Capability check failed: {exc}"))

    def _handle_load(self, command: Load) -> None:
        def _progress(data: dict[str, Any]) -> None:
            self._send(Loading(data=dict(data)))

        try:
            self._resident.acquire(command.model_id, on_progress=_progress)
        except ModelLoadError as exc:
            self._send(Error(message=str(exc)))
            return
        self._send(Ready())

    def _handle_generate(self, command: Generate) -> None:
        session = GenerationSession(self._send)
        if not self._resident.is_loaded:
            session.fail("No model loaded.")
            return

        adapter = self._resident.adapter
        tokenizer, model = self._resident.tokenizer, self._resident.model
        interrupted = False
        try:
            inputs, input_tokens = adapter.prepare_inputs(tokenizer, command.turns, command.options)
            session.start(input_tokens)
            token_iter = adapter.stream_generate(
                tokenizer,
                model,
                inputs,
                max_new_tokens=command.options.max_tokens,
                stopping=self._stopping,
            )
            try:
                for delta in token_iter:
                    session.on_text(delta)
                    if self._stopping.should_stop():
                        break
            finally:
                close = getattr(token_iter, "close", None)
                if callable(close):
                    close()
            interrupted = self._stopping.should_stop()
        except Exception as exc:
            logger.warning("Generation failed", exc_info=True)
            session.fail(f"Generation failed: {exc}")
            return
        session.finish(interrupted=interrupted)
