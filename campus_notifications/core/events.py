"""In-process event target: named events, many listeners, fire in registration order."""
import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventTarget:
    """Minimal add/remove/dispatch listener registry.

    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def add_listener(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def dispatch(self, event: str, detail: Any = None) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(detail)
            except Exception:
                logger.exception("Listener for %r failed", event)

    def clear(self) -> None:
        self._listeners.clear()
