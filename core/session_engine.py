"""
Session Engine：單據狀態轉換 + commit 之後的副作用

SessionManager 負責 transaction；這裡在 transaction 成功 commit 之後：
- 廣播 Fan-out 事件
- 結帳時把收據快照交給收據輸出

每個寫入的「transaction -> commit -> publish」都在該房間的 EventHub.ordering 之內，
所以同一個房間 / 單據的事件順序和 commit 順序一致。收據輸出在順序鎖之外

commit 之後的步驟失敗不會回滾已經完成的狀態轉換：
收據輸出失敗只會記錄在 CloseResult.receipt_error，之後可以用 reprint_receipt 重送
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models import Room, RoomSession, SessionItem, Payment
from core.session_manager import SessionManager, SessionSnapshot
from core.events import (
    EventHub,
    event_hub,
    ROOM_UPDATED,
    SESSION_OPENED,
    SESSION_UPDATED,
    SESSION_CLOSED,
    SESSION_CANCELLED
)
from services.ledger_service import SessionTotals
from services.receipt_printer import ReceiptPrinter, build_receipt_printer
from services.receipt_service import ReceiptSnapshot, build_receipt_snapshot
from database import get_settings

logger = logging.getLogger(__name__)


@dataclass
class CloseResult:
    """結帳結果：單據一定已經 closed，收據是否送出另外回報"""
    session: RoomSession
    room: Optional[Room]
    totals: SessionTotals
    receipt: ReceiptSnapshot
    receipt_delivered: bool
    receipt_error: Optional[str] = None


@dataclass
class ReceiptResult:
    receipt: ReceiptSnapshot
    delivered: bool
    error: Optional[str] = None


class SessionEngine:
    """單據操作的唯一入口（開單 / 明細 / 付款 / 結帳 / 取消）"""

    def __init__(
        self,
        hub: EventHub,
        printer: ReceiptPrinter,
        receipt_title: str = "HAMAM POS RECEIPT",
        business_name: str = ""
    ):
        self.hub = hub
        self.printer = printer
        self.receipt_title = receipt_title
        self.business_name = business_name

    def open_session(self, db: Session, room_id: str, customer_name: Optional[str] = None) -> RoomSession:
        with self.hub.ordering(room_id):
            session, room = SessionManager.open_session(db, room_id, customer_name)

            self.hub.publish(ROOM_UPDATED, room.id, {"status": room.status.value})
            self.hub.publish(SESSION_OPENED, session.id)
        return session

    def add_item(self, db: Session, session_id: str, service_name: str, qty, unit_price) -> SessionItem:
        with self._ordering_for(db, session_id):
            item = SessionManager.add_item(db, session_id, service_name, qty, unit_price)

            self.hub.publish(SESSION_UPDATED, session_id)
        return item

    def add_payment(self, db: Session, session_id: str, method: str, amount) -> Payment:
        with self._ordering_for(db, session_id):
            payment = SessionManager.add_payment(db, session_id, method, amount)

            self.hub.publish(SESSION_UPDATED, session_id)
        return payment

    def close_session(self, db: Session, session_id: str) -> CloseResult:
        """
        結帳

        流程：
        1. SessionManager.close_session（transaction：重新讀取 -> 餘額檢查 -> 轉換 -> commit）
        2. 廣播 SessionClosed，房間存在時再廣播 RoomUpdated（和 1 在同一個房間順序鎖內）
        3. 放開順序鎖之後，用 transaction 內讀到的明細與付款建立收據快照並送出

        異常（都在 commit 之前，沒有任何寫入）：
            SessionNotFound / SessionNotOpen / BalanceNotZero / SessionConflict / StoreFailure
        """
        with self._ordering_for(db, session_id):
            closed = SessionManager.close_session(db, session_id)

            self.hub.publish(SESSION_CLOSED, closed.session.id)
            self._publish_room(closed.room)

        receipt = self._build_receipt(closed)
        result = self._deliver(receipt)

        return CloseResult(
            session=closed.session,
            room=closed.room,
            totals=closed.totals,
            receipt=receipt,
            receipt_delivered=result.delivered,
            receipt_error=result.error
        )

    def cancel_session(self, db: Session, session_id: str) -> RoomSession:
        with self._ordering_for(db, session_id):
            cancelled = SessionManager.cancel_session(db, session_id)

            self.hub.publish(SESSION_CANCELLED, cancelled.session.id)
            self._publish_room(cancelled.room)
        return cancelled.session

    def reprint_receipt(self, db: Session, session_id: str) -> ReceiptResult:
        """
        重送已結帳單據的收據（結帳時收據輸出失敗的補救路徑）

        異常：
            SessionNotFound: 單據不存在
            SessionNotClosed: 單據不是 closed
        """
        closed = SessionManager.get_closed_session(db, session_id)
        return self._deliver(self._build_receipt(closed))

    def get_session_detail(self, db: Session, session_id: str) -> SessionSnapshot:
        return SessionManager.get_session_detail(db, session_id)

    def list_active_sessions(self, db: Session) -> List[RoomSession]:
        return SessionManager.list_active_sessions(db)

    def _build_receipt(self, snapshot: SessionSnapshot) -> ReceiptSnapshot:
        return build_receipt_snapshot(
            snapshot.session,
            snapshot.items,
            snapshot.payments,
            room_name=snapshot.room.name if snapshot.room is not None else None,
            title=self.receipt_title,
            business_name=self.business_name
        )

    def _deliver(self, receipt: ReceiptSnapshot) -> ReceiptResult:
        try:
            self.printer.deliver(receipt)
        except Exception as e:
            # 單據已經 closed，這裡只回報
            logger.error(f"Receipt delivery failed for session {receipt.session_id}: {e}", exc_info=True)
            return ReceiptResult(receipt=receipt, delivered=False, error=str(e) or e.__class__.__name__)
        return ReceiptResult(receipt=receipt, delivered=True)

    def _ordering_for(self, db: Session, session_id: str):
        # 單據的房間不會改變，先查出來當順序鎖的 key
        return self.hub.ordering(SessionManager.get_room_id(db, session_id))

    def _publish_room(self, room: Optional[Room]) -> None:
        if room is not None:
            self.hub.publish(ROOM_UPDATED, room.id, {"status": room.status.value})


@lru_cache()
def get_session_engine() -> SessionEngine:
    """FastAPI dependency：依設定建立的 SessionEngine（全域 EventHub + 設定的收據輸出）"""
    settings = get_settings()
    return SessionEngine(
        hub=event_hub,
        printer=build_receipt_printer(settings),
        receipt_title=settings.receipt_title,
        business_name=settings.business_name
    )
