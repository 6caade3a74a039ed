from __future__ import annotations

import threading
from typing import Callable, Generic, Iterator, TypeVar


T = TypeVar("T")

Listener = Callable[[T], None]


class SubscriberSet(Generic[T]):
    """Copy-on-write set of listeners.

    Dispatch iterates over `snapshot()`, so a listener may add or remove listeners
    (including itself) while being invoked without skipping or double-invoking others.
    Insertion order is preserved.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: tuple[Listener[T], ...] = ()

    def add(self, listener: Listener[T]) -> None:
        with self._lock:
            if listener in self._listeners:
                return
            self._listeners = self._listeners + (listener,)

    def discard(self, listener: Listener[T]) -> None:
        with self._lock:
            if listener not in self._listeners:
                return
            self._listeners = tuple(fn for fn in self._listeners if fn != listener)

    def clear(self) -> None:
        with self._lock:
            self._listeners = ()

    def snapshot(self) -> tuple[Listener[T], ...]:
        return self._listeners

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners

    def __iter__(self) -> Iterator[Listener[T]]:
        return iter(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)
