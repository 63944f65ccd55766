"""Single-writer state containers with change listeners."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class StateContainer:
    """
    Base for the store and the calendar coordinator.

    Only the container mutates its own state; views subscribe for change
    notifications and unsubscribe when they go away.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                # A broken view must not break the writer.
                logger.exception("State listener failed in %s", type(self).__name__)
