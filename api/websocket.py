"""
WebSocket：即時通知

連線後會收到之後所有 commit 的事件（JSON）：
    {"seq": 12, "event": "RoomUpdated", "entity_id": "<room id>", "status": "occupied"}
    {"seq": 13, "event": "SessionOpened", "entity_id": "<session id>"}

事件只是「去重新查詢」的提醒，不是狀態本身
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket

from core.events import EventHub, QueueSubscription, get_event_hub
from database import get_settings

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


async def _forward_events(websocket: WebSocket, subscription: QueueSubscription) -> None:
    while True:
        event = await subscription.get()
        await websocket.send_json(event.to_message())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # 客戶端送來的訊息一律忽略，只等斷線
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/hubs/rooms")
async def rooms_hub(websocket: WebSocket, hub: EventHub = Depends(get_event_hub)):
    # 先登記再 accept：客戶端一連上就不會漏掉之後的事件
    subscription = QueueSubscription(asyncio.get_running_loop(), get_settings().event_queue_size)
    hub.subscribe(subscription)
    try:
        await websocket.accept()

        forwarder = asyncio.create_task(_forward_events(websocket, subscription))
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        done, pending = await asyncio.wait({forwarder, receiver}, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"WebSocket connection ended with error: {task.exception()}")

        logger.info("WebSocket client disconnected")
    finally:
        hub.unsubscribe(subscription)
