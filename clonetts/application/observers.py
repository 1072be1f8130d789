from __future__ import annotations

from collections.abc import Callable
from threading import Lock
from typing import Generic, TypeVar

T = TypeVar("T")


class Broadcast(Generic[T]):
    """Callback registry; observers are invoked synchronously, in subscription order."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._observers: list[Callable[[T], None]] = []

    def subscribe(self, observer: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def emit(self, value: T) -> None:
        # Snapshot so observers may unsubscribe while being notified.
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            observer(value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)
