"""
狀態機：集中管理單據與房間的狀態轉換

單據：
    open ──CloseSession（餘額為零）──> closed
    open ──CancelSession────────────> cancelled
    closed / cancelled 是終止狀態

房間（只處理佔用相關的兩個轉換）：
    開單：任何狀態 -> occupied
    結帳 / 取消：occupied -> available
    cleaning / maintenance 由操作員設定，單據轉換不會覆寫（除非是進入 occupied）
"""
from datetime import datetime
import logging

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from models import Room, RoomSession, RoomStatus, SessionStatus, utcnow
from core.exceptions import SessionNotOpen, SessionConflict

logger = logging.getLogger(__name__)


class SessionStateMachine:
    """單據狀態機"""

    TRANSITIONS = {
        SessionStatus.OPEN: {SessionStatus.CLOSED, SessionStatus.CANCELLED},
        SessionStatus.CLOSED: set(),
        SessionStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(cls, current: SessionStatus, target: SessionStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def ensure_open(cls, session: RoomSession) -> None:
        """
        確認單據仍是 open

        異常：
            SessionNotOpen: 單據已結帳或已取消
        """
        if session.status != SessionStatus.OPEN:
            raise SessionNotOpen(session.id, session.status.value)

    @classmethod
    def transition(cls, session: RoomSession, target: SessionStatus, db: Session, at: datetime = None) -> RoomSession:
        """
        轉換單據狀態（條件式 UPDATE，必須在呼叫端的 transaction 內）

        UPDATE sessions SET status=<target>, end_at=<at>
        WHERE id=<id> AND status=<讀到的狀態>

        影響 0 筆代表另一個 transaction 已經先轉換了這張單據
        進入終止狀態時一併設定 end_at，維持「end_at 有值 <=> status != open」

        參數：
            session: 已在此 transaction 內讀取（並鎖定）的單據
            target: 目標狀態
            db: SQLAlchemy Session
            at: 結束時間（預設現在）

        異常：
            SessionNotOpen: 非法的轉換
            SessionConflict: 條件式 UPDATE 沒有命中
        """
        if not cls.can_transition(session.status, target):
            raise SessionNotOpen(session.id, session.status.value)

        old_status = session.status
        end_at = at or utcnow()

        rows = db.query(RoomSession).filter(
            RoomSession.id == session.id,
            RoomSession.status == old_status
        ).update(
            {RoomSession.status: target, RoomSession.end_at: end_at},
            synchronize_session=False
        )
        if rows != 1:
            raise SessionConflict(f"Session {session.id} was changed by another transaction")

        # 同步記憶體內的物件，但不標記為 dirty（資料庫已經更新過了）
        set_committed_value(session, "status", target)
        set_committed_value(session, "end_at", end_at)

        logger.info(f"Session {session.id}: {old_status.value} -> {target.value}")
        return session


def occupy_room(room: Room) -> None:
    """開單：房間進入 occupied"""
    if room.status != RoomStatus.OCCUPIED:
        logger.info(f"Room {room.id}: {room.status.value} -> occupied")
    room.status = RoomStatus.OCCUPIED


def release_room(room: Room) -> bool:
    """
    結帳 / 取消：釋放房間

    只有 occupied 的房間會變回 available，其他狀態不動

    返回：
        True 如果房間狀態有改變
    """
    if room.status != RoomStatus.OCCUPIED:
        logger.warning(
            f"Room {room.id} is {room.status.value} while its session ends; status left untouched"
        )
        return False

    room.status = RoomStatus.AVAILABLE
    logger.info(f"Room {room.id}: occupied -> available")
    return True
