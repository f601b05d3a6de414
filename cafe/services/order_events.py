from __future__ import annotations

import logging
from typing import Any, Protocol

from cafe.models.order import Order
from cafe.schemas.orders import OrderRead
from cafe.services.event_bus import EventBus, event_bus

logger = logging.getLogger(__name__)

ORDERS_TOPIC = "/topic/orders"
ORDER_CREATED = "order.created"
ORDER_UPDATED = "order.updated"


def order_topic(order_id: str) -> str:
    return f"{ORDERS_TOPIC}/{order_id}"


def build_order_payload(order: Order, event: str, previous_status: Any = None) -> dict[str, Any]:
    previous = getattr(previous_status, "value", previous_status)
    return {
        "event": event,
        "previous_status": previous,
        "order": OrderRead.model_validate(order).model_dump(mode="json", by_alias=True),
    }


class NotificationPublisher(Protocol):
    def order_created(self, order: Order) -> None: ...

    def order_updated(self, order: Order, previous_status: Any = None) -> None: ...


class OrderEventPublisher:
    """Broadcasts order changes on the event bus; delivery is fire-and-forget."""

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus or event_bus

    def order_created(self, order: Order) -> None:
        logger.info("Broadcasting new order: %s", order.id, extra={"order_id": order.id})
        self.bus.emit(ORDERS_TOPIC, build_order_payload(order, ORDER_CREATED))

    def order_updated(self, order: Order, previous_status: Any = None) -> None:
        logger.info(
            "Broadcasting order update: %s -> %s",
            order.id,
            getattr(order.status, "value", order.status),
            extra={"order_id": order.id},
        )
        payload = build_order_payload(order, ORDER_UPDATED, previous_status=previous_status)
        self.bus.emit(ORDERS_TOPIC, payload)
        self.bus.emit(order_topic(order.id), payload)
