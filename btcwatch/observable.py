"""
Observable current-value holder.

Downstream code reads the value synchronously with get() and registers
callbacks with subscribe() to hear about changes.
"""

from typing import Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class Observable(Generic[T]):
    """A value that notifies subscribers whenever it is published."""

    def __init__(self, value: T, name: str = "observable"):
        self.name = name
        self._value = value
        self._subscribers: list[Callable[[T], None]] = []

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify subscribers."""
        self._value = value
        self.notify()

    def update(self, fn: Callable[[T], T]) -> None:
        """Replace the value with fn(value) and notify subscribers."""
        self._value = fn(self._value)
        self.notify()

    def notify(self) -> None:
        """Re-emit the current value to every subscriber."""
        for callback in list(self._subscribers):
            try:
                callback(self._value)
            except Exception as e:
                logger.error("subscriber_error", observable=self.name, error=str(e))

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback.

        The callback is called immediately with the current value and then
        on every publication. Returns a function that unsubscribes it.
        """
        self._subscribers.append(callback)
        try:
            callback(self._value)
        except Exception as e:
            logger.error("subscriber_error", observable=self.name, error=str(e))

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
