"""
Event Fan-out：commit 成功之後，把狀態變更通知所有連線中的觀察者

原則：
- 只在 commit 之後呼叫 publish（由 SessionEngine 與 api/rooms 負責）
- 同一個房間的 commit + publish 在 EventHub.ordering 之內完成，事件順序和 commit 順序一致
- 不保存、不重播：晚連線的觀察者收不到之前的事件
- 不阻塞：慢的觀察者只會掉事件，不會拖住寫入的請求
- 事件只帶 id（房間事件多帶新狀態），觀察者收到後自己重新查詢
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

ROOM_UPDATED = "RoomUpdated"
SESSION_OPENED = "SessionOpened"
SESSION_UPDATED = "SessionUpdated"
SESSION_CLOSED = "SessionClosed"
SESSION_CANCELLED = "SessionCancelled"


@dataclass(frozen=True)
class FanoutEvent:
    seq: int
    topic: str
    entity_id: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        message = {"seq": self.seq, "event": self.topic, "entity_id": self.entity_id}
        message.update(self.extra)
        return message


class Observer(Protocol):
    def offer(self, event: FanoutEvent) -> None:
        """不可阻塞；失敗時拋出異常，Hub 會把它移出登記表"""
        ...


class EventHub:
    """
    觀察者登記表 + 廣播

    publish 在同一把鎖內配發序號並依序 offer，所以所有觀察者看到的順序相同

    commit 順序由呼叫端負責：寫入方在 ordering(room_id) 之內完成
    「transaction commit -> publish」，同一個房間的下一個寫入要等前一個廣播完才會開始
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observers = []
        self._seq = 0
        self._ordering_locks = {}

    def ordering(self, key: str):
        """
        取得某個房間的 commit + publish 順序鎖

        使用方式：
            with hub.ordering(room.id):
                room = RoomManager.update_room(db, room.id, ...)
                hub.publish(ROOM_UPDATED, room.id, {"status": room.status.value})

        注意：
            - 必須在開始 transaction 之前取得，不可在 transaction 內等待
            - 不要在鎖內做網路 I/O（例如收據輸出）
        """
        with self._lock:
            return self._ordering_locks.setdefault(key, threading.RLock())

    def subscribe(self, observer: Observer) -> Observer:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)
        logger.info(f"Observer subscribed ({self.observer_count} connected)")
        return observer

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
        logger.info(f"Observer unsubscribed ({self.observer_count} connected)")

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def publish(self, topic: str, entity_id: str, extra: Optional[Dict[str, Any]] = None) -> FanoutEvent:
        """
        廣播一個事件給目前所有的觀察者

        參數：
            topic: 事件名稱（RoomUpdated / SessionOpened / ...）
            entity_id: 房間或單據 id
            extra: 額外欄位（例如 RoomUpdated 的 status）

        返回：
            送出的 FanoutEvent

        注意：
            - 永遠不拋出異常；壞掉的觀察者會被記錄並移除
        """
        broken = []
        with self._lock:
            self._seq += 1
            event = FanoutEvent(seq=self._seq, topic=topic, entity_id=entity_id, extra=dict(extra or {}))
            for observer in list(self._observers):
                try:
                    observer.offer(event)
                except Exception as e:
                    logger.warning(f"Dropping observer after failed delivery of {topic}: {e}")
                    broken.append(observer)
            for observer in broken:
                self._observers.remove(observer)

        logger.debug(f"Published {topic} {entity_id} (seq={event.seq})")
        return event


class QueueSubscription:
    """
    把事件從 worker thread 轉交給某個 asyncio event loop 的觀察者（WebSocket 連線）

    - offer() 可以在任何 thread 呼叫，透過 call_soon_threadsafe 放進有上限的 asyncio.Queue
    - Queue 滿了就丟掉這個事件（計數 + warning），不影響其他觀察者
    - loop 已關閉時 call_soon_threadsafe 會拋 RuntimeError，Hub 會把它移除
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, max_pending: int = 100):
        self._loop = loop
        self._queue = asyncio.Queue(maxsize=max_pending)
        self.dropped = 0

    def offer(self, event: FanoutEvent) -> None:
        self._loop.call_soon_threadsafe(self._put, event)

    def _put(self, event: FanoutEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Slow observer, dropped {event.topic} (seq={event.seq}, total dropped={self.dropped})")

    async def get(self) -> FanoutEvent:
        return await self._queue.get()


event_hub = EventHub()


def get_event_hub() -> EventHub:
    """FastAPI dependency：全域的 EventHub"""
    return event_hub
