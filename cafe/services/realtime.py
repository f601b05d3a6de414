from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, DefaultDict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Fan-out of bus events to WebSocket subscribers, keyed by topic.

    `publish` may be called from any worker thread: sends are scheduled on
    the event loop that owns the sockets and never awaited by the caller.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, Set[WebSocket]] = defaultdict(set)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    async def connect(self, topic: str, websocket: WebSocket) -> None:
        self._loop = asyncio.get_running_loop()
        # Registra antes do accept: o cliente pode disparar eventos logo após o handshake
        with self._lock:
            self._subscribers[topic].add(websocket)
        try:
            await websocket.accept()
        except Exception:
            self.disconnect(topic, websocket)
            raise
        logger.info("WebSocket subscribed topic=%s total=%s", topic, self.subscriber_count(topic))

    def disconnect(self, topic: str, websocket: WebSocket) -> None:
        with self._lock:
            sockets = self._subscribers.get(topic)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                self._subscribers.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        loop = self._loop
        with self._lock:
            sockets = list(self._subscribers.get(topic, ()))
        if not sockets or loop is None or loop.is_closed():
            return
        for websocket in sockets:
            asyncio.run_coroutine_threadsafe(self._send(topic, websocket, payload), loop)

    async def _send(self, topic: str, websocket: WebSocket, payload: dict[str, Any]) -> None:
        try:
            await websocket.send_json(payload)
        except Exception:
            logger.warning("WebSocket send failed topic=%s; dropping subscriber", topic, exc_info=True)
            self.disconnect(topic, websocket)


realtime_hub = RealtimeHub()
