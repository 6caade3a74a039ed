"""Incremental reasoning/answer phase detection over a streamed model output.

The detector consumes text deltas as they arrive and re-scans the cumulative output for
the ``<think>`` / ``</think>`` delimiters, so a delimiter split across two deltas is still
found once its second half arrives. It never looks past what has already arrived.
"""

from __future__ import annotations

import enum

from .protocol import Event, Phase, Thinking, ThinkingDone, Update


THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

# Models that never open a reasoning block are detected after this many tokens.
ESCAPE_AFTER_TOKENS = 3

BUDGET_EXHAUSTED_MESSAGE = "reasoning exhausted the token budget; no answer was generated"


class PhaseState(str, enum.Enum):
    NOT_STARTED = "not_started"
    THINKING = "thinking"
    GENERATING = "generating"
    DONE = "done"


class PhaseDetector:
    """State machine turning cumulative model output into phase/content events.

    `feed()` returns the events produced by one increment; `finish()` returns the events
    that close the session (budget exhaustion, or flushing a short answer that never
    reached the escape threshold). `Update` events carry only the output text here;
    the caller attaches token statistics.
    """

    def __init__(
        self,
        *,
        open_delimiter: str = THINK_OPEN,
        close_delimiter: str = THINK_CLOSE,
        escape_after_tokens: int = ESCAPE_AFTER_TOKENS,
    ) -> None:
        self._open = open_delimiter
        self._close = close_delimiter
        self._escape_after = int(escape_after_tokens)

        self._state = PhaseState.NOT_STARTED
        self._text = ""
        self._open_end: int | None = None
        self._token_count = 0

    @property
    def state(self) -> PhaseState:
        return self._state

    @property
    def text(self) -> str:
        """Cumulative raw output seen so far."""
        return self._text

    @property
    def thinking(self) -> str:
        """Reasoning interior buffered so far (empty if no block was opened)."""
        if self._open_end is None:
            return ""
        close_idx = self._text.find(self._close, self._open_end)
        if close_idx < 0:
            return self._text[self._open_end :]
        return self._text[self._open_end : close_idx]

    def feed(self, delta: str, token_count: int | None = None) -> list[Event]:
        """Consume one increment.

        Args:
            delta: Newly arrived text (may be empty for tokens that decode to nothing).
            token_count: Total tokens produced so far, including this increment.
                Defaults to counting one token per call.
        """
        if self._state is PhaseState.DONE:
            return []

        self._token_count = self._token_count + 1 if token_count is None else int(token_count)
        self._text += delta

        if self._state is PhaseState.GENERATING:
            return [Update(delta)] if delta else []

        if self._open_end is None:
            return self._feed_before_open()

        return self._feed_thinking(delta)

    def finish(self, *, interrupted: bool = False) -> list[Event]:
        """Close the session and return any trailing events."""
        events: list[Event] = []
        if self._state is PhaseState.THINKING:
            events.append(ThinkingDone(self.thinking.strip()))
            if not interrupted:
                events.append(Update(BUDGET_EXHAUSTED_MESSAGE))
        elif self._state is PhaseState.NOT_STARTED and self._text:
            events.append(Phase("generating"))
            events.append(Update(self._text))
        self._state = PhaseState.DONE
        return events

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _feed_before_open(self) -> list[Event]:
        events: list[Event] = []
        open_idx = self._text.find(self._open)
        if open_idx >= 0:
            self._open_end = open_idx + len(self._open)
            self._state = PhaseState.THINKING
            events.append(Phase("thinking"))
            trailing = self._text[self._open_end :]
            if self._close in trailing:
                events.extend(self._close_thinking())
            elif trailing:
                events.append(Thinking(trailing))
            return events

        close_idx = self._text.find(self._close)
        if close_idx >= 0:
            # The opening delimiter was part of the prompt; only the close reached us.
            self._state = PhaseState.GENERATING
            events.append(Phase("generating"))
            trailing = self._text[close_idx + len(self._close) :].lstrip()
            if trailing:
                events.append(Update(trailing))
            return events

        if self._token_count > self._escape_after:
            self._state = PhaseState.GENERATING
            events.append(Phase("generating"))
            if self._text:
                events.append(Update(self._text))
        return events

    def _feed_thinking(self, delta: str) -> list[Event]:
        assert self._open_end is not None
        if self._text.find(self._close, self._open_end) >= 0:
            return self._close_thinking()
        return [Thinking(delta)] if delta else []

    def _close_thinking(self) -> list[Event]:
        assert self._open_end is not None
        close_idx = self._text.find(self._close, self._open_end)
        interior = self._text[self._open_end : close_idx].strip()
        self._state = PhaseState.GENERATING
        events: list[Event] = [ThinkingDone(interior), Phase("generating")]
        trailing = self._text[close_idx + len(self._close) :].lstrip()
        if trailing:
            events.append(Update(trailing))
        return events
