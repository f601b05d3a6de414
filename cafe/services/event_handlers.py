from __future__ import annotations

import logging

from cafe.services.event_bus import event_bus
from cafe.services.realtime import realtime_hub

logger = logging.getLogger(__name__)


def forward_to_websockets(topic: str, payload: dict) -> None:
    realtime_hub.publish(topic, payload)


def log_order_event(topic: str, payload: dict) -> None:
    order = payload.get("order") or {}
    logger.debug(
        "Order event %s topic=%s status=%s",
        payload.get("event"),
        topic,
        order.get("status"),
        extra={"order_id": order.get("id")},
    )


event_bus.subscribe_all(forward_to_websockets)
event_bus.subscribe_all(log_order_event)
