"""
資料模型

四張表：rooms、sessions（adisyon）、session_items、payments

注意：
- 金額一律 Numeric(10, 2)，數量是 Float
- 明細小計（qty × unit_price）不存欄位，永遠由 services.ledger_service 重新計算
- sessions 上有 partial unique index：同一個房間最多一張 open 的單據，由資料庫強制
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Float, Numeric, DateTime, ForeignKey, Index, Enum, text
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """UTC 現在時間（naive，資料庫一律存 UTC）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class RoomStatus(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    CLEANING = "cleaning"
    MAINTENANCE = "maintenance"


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(64), nullable=False)
    status = Column(
        Enum(RoomStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=RoomStatus.AVAILABLE,
        index=True
    )
    # 同時是 optimistic concurrency token：UPDATE 會帶 WHERE updated_at = <讀到的值>
    updated_at = Column(DateTime, nullable=False)

    sessions = relationship("RoomSession", back_populates="room")

    __mapper_args__ = {
        "version_id_col": updated_at,
        "version_id_generator": lambda version: utcnow(),
    }


class RoomSession(Base):
    """一張單據（adisyon）：一位客人在一個房間從開單到結帳 / 取消"""
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    customer_name = Column(String(64), nullable=True)
    start_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    end_at = Column(DateTime, nullable=True)
    status = Column(
        Enum(SessionStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=SessionStatus.OPEN,
        index=True
    )

    room = relationship("Room", back_populates="sessions")
    items = relationship("SessionItem", back_populates="session", order_by="SessionItem.added_at")
    payments = relationship("Payment", back_populates="session", order_by="Payment.paid_at")

    __table_args__ = (
        Index(
            "ux_sessions_one_open_per_room",
            "room_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )


class SessionItem(Base):
    __tablename__ = "session_items"

    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    service_name = Column(String(64), nullable=False)
    qty = Column(Float, nullable=False, default=1.0)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)
    added_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    session = relationship("RoomSession", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    method = Column(String(8), nullable=False, default="cash")
    amount = Column(Numeric(10, 2), nullable=False)
    paid_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    session = relationship("RoomSession", back_populates="payments")
