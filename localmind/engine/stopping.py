from __future__ import annotations

import threading


class StoppingController:
    """Cooperative cancellation flag for one generation session at a time.

    The generation loop is the only reader (`should_stop()` between tokens);
    `interrupt()` may be called from any thread. Call `reset()` before each new
    session, otherwise a stale interrupt stops the next session immediately.
    """

    def __init__(self) -> None:
        self._interrupted = threading.Event()

    def should_stop(self) -> bool:
        return self._interrupted.is_set()

    def interrupt(self) -> None:
        self._interrupted.set()

    def reset(self) -> None:
        self._interrupted.clear()

