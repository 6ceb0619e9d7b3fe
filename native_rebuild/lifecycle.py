"""Lifecycle event emitter for rebuild runs.

The scheduler is the single producer. Consumers subscribe to one event kind
with ``on()`` or to every event with ``on_any()``; subscriptions should be
made before the run is started so no early event is missed. Emission is
serialized, so subscribers never run concurrently with each other even when
events come from different worker threads.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from native_rebuild.types import LifecycleEvent, LifecycleEventKind

logger = logging.getLogger(__name__)

Subscriber = Callable[[LifecycleEvent], None]


def _event_kind(kind: LifecycleEventKind | str) -> LifecycleEventKind:
    if isinstance(kind, LifecycleEventKind):
        return kind
    # Accept the 'module-done' style names as well as 'done'
    return LifecycleEventKind(kind.removeprefix("module-"))


class LifecycleEmitter:
    """Thread-safe observer registry for lifecycle events."""

    def __init__(self) -> None:
        self._subscribers: dict[LifecycleEventKind | None, list[Subscriber]] = {}
        self._lock = threading.RLock()
        self._history: list[LifecycleEvent] = []

    def on(self, kind: LifecycleEventKind | str, callback: Subscriber) -> Subscriber:
        """Subscribe to one kind of event.

        Args:
            kind: Event kind, e.g. ``LifecycleEventKind.DONE``, ``"done"`` or
                ``"module-done"``.
            callback: Called with each matching LifecycleEvent.

        Returns:
            The callback, so it can be used as a decorator target.
        """
        with self._lock:
            self._subscribers.setdefault(_event_kind(kind), []).append(callback)
        return callback

    def on_any(self, callback: Subscriber) -> Subscriber:
        """Subscribe to every event."""
        with self._lock:
            self._subscribers.setdefault(None, []).append(callback)
        return callback

    def off(self, callback: Subscriber) -> None:
        """Remove a callback from every subscription."""
        with self._lock:
            for callbacks in self._subscribers.values():
                while callback in callbacks:
                    callbacks.remove(callback)

    def emit(self, event: LifecycleEvent) -> None:
        """Deliver an event to its subscribers.

        A failing subscriber is logged and does not stop delivery to others
        or affect the run.
        """
        with self._lock:
            self._history.append(event)
            callbacks = [
                *self._subscribers.get(event.kind, []),
                *self._subscribers.get(None, []),
            ]
            for callback in callbacks:
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "Lifecycle subscriber failed on %s for %s",
                        event.kind.value,
                        event.candidate.name,
                    )

    @property
    def history(self) -> list[LifecycleEvent]:
        """Every event emitted so far, in emission order."""
        with self._lock:
            return list(self._history)

    def count(self, kind: LifecycleEventKind | str) -> int:
        """Number of events of one kind emitted so far."""
        wanted = _event_kind(kind)
        with self._lock:
            return sum(1 for e in self._history if e.kind is wanted)


__all__ = ["LifecycleEmitter", "Subscriber"]
