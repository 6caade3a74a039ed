"""One generation session: token statistics + phase detection + terminal event guard.

Every backend drives the same `GenerationSession`, so the event sequence
``start -> phase/thinking* -> thinkingDone? -> update* -> complete|error`` is identical
whether tokens come from a local model, an HTTP stream or a remote API.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable

from .phase import PhaseDetector
from .protocol import Complete, Error, Event, Start, Update

logger = logging.getLogger(__name__)


class GenerationSession:
    def __init__(
        self,
        emit: Callable[[Event], None],
        *,
        input_tokens: int = 0,
        detector: PhaseDetector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._emit = emit
        self._detector = detector or PhaseDetector()
        self._clock = clock
        self._input_tokens = int(input_tokens)

        self._started_at: float | None = None
        self._token_count = 0
        self._tokens_per_second: float | None = None
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def tokens_per_second(self) -> float | None:
        return self._tokens_per_second

    @property
    def detector(self) -> PhaseDetector:
        return self._detector

    def start(self, input_tokens: int | None = None) -> None:
        if self._closed or self._started:
            return
        if input_tokens is not None:
            self._input_tokens = int(input_tokens)
        self._started = True
        self._emit(Start(input_tokens=self._input_tokens))

    def on_text(self, delta: str, *, tokens: int = 1) -> None:
        """Record `tokens` newly produced tokens whose decoded text is `delta`."""
        if self._closed:
            logger.debug("Dropping text produced after the session closed")
            return
        if not self._started:
            self.start()

        now = self._clock()
        if self._started_at is None:
            self._started_at = now
        previous = self._token_count
        self._token_count += max(int(tokens), 0)
        if previous > 0:
            elapsed = now - self._started_at
            if elapsed > 0:
                self._tokens_per_second = self._token_count / elapsed

        for event in self._detector.feed(delta, self._token_count):
            self._emit(self._with_stats(event))

    def set_input_tokens(self, input_tokens: int) -> None:
        self._input_tokens = int(input_tokens)

    def finish(
        self,
        *,
        interrupted: bool = False,
        token_count: int | None = None,
        tokens_per_second: float | None = None,
        input_tokens: int | None = None,
    ) -> None:
        """Flush the detector and emit the single terminal `complete` event.

        Backends that report authoritative statistics (e.g. server-side eval counters)
        pass them here; they replace the locally measured values.
        """
        if self._closed:
            return
        if not self._started:
            self.start()
        if token_count is not None:
            self._token_count = int(token_count)
        if tokens_per_second is not None:
            self._tokens_per_second = float(tokens_per_second)
        if input_tokens is not None:
            self._input_tokens = int(input_tokens)

        for event in self._detector.finish(interrupted=interrupted):
            self._emit(self._with_stats(event))
        self._closed = True
        self._emit(
            Complete(
                tokens_per_second=self._tokens_per_second,
                token_count=self._token_count,
                input_tokens=self._input_tokens,
            )
        )

    def fail(self, message: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._emit(Error(message=message))

    def _with_stats(self, event: Event) -> Event:
        if isinstance(event, Update):
            return dataclasses.replace(
                event,
                tokens_per_second=self._tokens_per_second,
                token_count=self._token_count,
            )
        return event
