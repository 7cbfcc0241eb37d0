"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

PostgreSQL：SELECT ... FOR UPDATE 悲觀鎖（Pessimistic Locking）
SQLite：不支援 FOR UPDATE（SQLAlchemy 會忽略），由 database.build_engine 的
BEGIN IMMEDIATE 把寫入 transaction 序列化
"""
from sqlalchemy.orm import Session, Query

from models import Room, RoomSession, SessionStatus


def with_room_lock(room_id: str, db: Session) -> Query:
    """
    鎖定一個 Room（行級鎖）

    使用場景：
    - 開單：檢查「房間沒有 open 單據」和新增單據之間不能被其他請求插隊
    - 結帳 / 取消時釋放房間

    範例：
        room = with_room_lock(room_id, db).first()
        if not room:
            raise RoomNotFound(room_id)

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Room).filter(
        Room.id == room_id
    ).with_for_update(nowait=False)


def with_session_lock(session_id: str, db: Session) -> Query:
    """
    鎖定一張單據（行級鎖）

    使用場景：
    - 新增明細 / 付款前重新檢查單據狀態
    - 結帳：重新讀取明細與付款、計算餘額、轉換狀態
    """
    return db.query(RoomSession).filter(
        RoomSession.id == session_id
    ).with_for_update(nowait=False)


def open_sessions_for_room(room_id: str, db: Session) -> Query:
    """
    查詢房間上 status=open 的單據

    必須在已經鎖住房間的 transaction 內呼叫；資料庫上另有 partial unique index 兜底
    """
    return db.query(RoomSession).filter(
        RoomSession.room_id == room_id,
        RoomSession.status == SessionStatus.OPEN
    )
