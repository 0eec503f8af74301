"""Change notification subject.

The sync engine publishes every new snapshot here; presentation layers
subscribe and re-render.  Observers are isolated from the engine: an observer
that raises is logged and skipped, and subscribing or unsubscribing never
touches engine state.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class ChangeSubject(Generic[T]):
    """Synchronous fan-out of published values to subscribed callbacks."""

    def __init__(self) -> None:
        self._observers: list[Callable[[T], None]] = []

    def subscribe(self, observer: Callable[[T], None]) -> Callable[[], None]:
        """Register *observer*; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            self.unsubscribe(observer)

        return _unsubscribe

    def unsubscribe(self, observer: Callable[[T], None]) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def publish(self, value: T) -> None:
        # Iterate over a copy: observers may unsubscribe while being notified.
        for observer in list(self._observers):
            try:
                observer(value)
            except Exception:
                logger.exception("Snapshot observer {!r} failed", observer)

    def clear(self) -> None:
        self._observers.clear()

    @property
    def observer_count(self) -> int:
        return len(self._observers)
