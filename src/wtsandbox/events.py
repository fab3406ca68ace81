"""Sandbox lifecycle events and their observers.

- ``Observer`` — runtime-checkable protocol for event receivers.
- ``EventManager`` — ordered fan-out to registered observers.
- ``CallbackObserver`` — adapts a plain callable.
- ``RecordingObserver`` — keeps every event it receives.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable

    from wtsandbox.models import EventType, SandboxEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class Observer(Protocol):
    """Receives sandbox events."""

    def on_event(self, event: SandboxEvent) -> None:
        """Handle *event*; called synchronously on the emitting task."""
        ...


class EventManager:
    """Delivers events to observers in registration order.

    The observer list is snapshotted under the lock, so observers may
    register or unregister (themselves included) while an event is being
    delivered.  An observer that raises is logged and skipped.
    """

    def __init__(self, *, log: logging.Logger | None = None) -> None:
        self._observers: list[Observer] = []
        self._lock = threading.Lock()
        self._log = log or logger

    def add_observer(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> bool:
        """Unregister *observer*; returns ``False`` if it was not registered."""
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def emit(self, event: SandboxEvent) -> None:
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                observer.on_event(event)
            except Exception:
                self._log.exception(
                    "observer %r failed on %s event for %s",
                    observer,
                    event.type.value,
                    event.sandbox_id,
                )


class CallbackObserver:
    """Wraps ``fn(event)`` as an :class:`Observer`."""

    def __init__(self, fn: Callable[[SandboxEvent], None]) -> None:
        self._fn = fn

    def on_event(self, event: SandboxEvent) -> None:
        self._fn(event)

    def __repr__(self) -> str:
        return f"CallbackObserver({self._fn!r})"


class RecordingObserver:
    """Keeps received events in arrival order."""

    def __init__(self) -> None:
        self.events: list[SandboxEvent] = []

    def on_event(self, event: SandboxEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[SandboxEvent]:
        return [e for e in self.events if e.type is event_type]

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def clear(self) -> None:
        self.events.clear()
