"""Listener registry for handle events."""

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

TRACE = "trace"
PROFILE = "profile"
ERROR = "error"
OPEN = "open"
CLOSE = "close"

EVENTS = (TRACE, PROFILE, ERROR, OPEN, CLOSE)

Listener = Callable[..., Any]


class Emitter:
    """Maps event names to listeners, dispatched in registration order."""

    def __init__(self, events: tuple[str, ...] = EVENTS):
        self._events = events
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def _check(self, event: str) -> None:
        if event not in self._events:
            raise ValueError(f"Unknown event '{event}'. Expected one of: {', '.join(self._events)}")

    def on(self, event: str, listener: Listener) -> None:
        self._check(event)
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> bool:
        """Remove the first registration of listener. Returns False if absent."""
        self._check(event)
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            return False
        return True

    def listeners(self, event: str) -> list[Listener]:
        self._check(event)
        return list(self._listeners[event])

    def emit(self, event: str, *args: Any) -> int:
        """Call every listener for event with args. Returns the listener count.

        A failing listener does not stop the rest; its exception is passed to
        the `error` listeners, or logged when there are none.
        """
        self._check(event)
        listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                if event == ERROR:
                    logger.error(f"'{event}' listener {listener!r} failed: {e}", exc_info=e)
                else:
                    self.report(e)
        return len(listeners)

    def report(self, error: BaseException) -> None:
        """Deliver a background error to `error` listeners."""
        if not self._listeners[ERROR]:
            logger.error(f"Unhandled background error: {error}", exc_info=error)
            return
        self.emit(ERROR, error)
