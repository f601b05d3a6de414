from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from cafe.services.order_events import ORDERS_TOPIC, order_topic
from cafe.services.realtime import realtime_hub

router = APIRouter(prefix="/ws", tags=["realtime"])

logger = logging.getLogger(__name__)


async def _serve(topic: str, websocket: WebSocket) -> None:
    await realtime_hub.connect(topic, websocket)
    try:
        # Canal só de saída; mensagens do cliente são ignoradas (ping/keepalive)
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected topic=%s", topic)
    finally:
        realtime_hub.disconnect(topic, websocket)


@router.websocket("/orders")
async def orders_feed(websocket: WebSocket):
    await _serve(ORDERS_TOPIC, websocket)


@router.websocket("/orders/{order_id}")
async def order_feed(websocket: WebSocket, order_id: str):
    await _serve(order_topic(order_id), websocket)
