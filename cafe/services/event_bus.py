from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List


Handler = Callable[[str, dict[str, Any]], None]


class EventBus:
    """In-process publish-by-topic.

    Delivery is at-most-once and best effort: a failing handler is logged
    and the remaining handlers still run. Nothing is persisted or replayed.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._wildcard: List[Handler] = []
        self._logger = logging.getLogger(__name__)

    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        handlers = list(self._handlers.get(topic, [])) + list(self._wildcard)
        if not handlers:
            self._logger.debug("EventBus: no handlers for %s", topic)
            return
        for handler in handlers:
            try:
                handler(topic, payload)
            except Exception:
                self._logger.exception("EventBus handler failed for %s", topic)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._wildcard.append(handler)


event_bus = EventBus()
