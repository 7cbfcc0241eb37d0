"""
Session Manager：單據（adisyon）生命週期的 transaction 層

職責：
1. 開單（建立單據 + 房間 occupied，同一個 transaction）
2. 新增明細 / 付款（append-only，重新檢查單據狀態）
3. 結帳（重新讀取、重新計算、餘額為零才轉換狀態、釋放房間）
4. 取消（不檢查餘額，釋放房間）
5. 查詢單據

原則：
- 每個寫入操作都是一個 @transactional：要嘛全部寫入，要嘛什麼都沒寫
- 業務異常都在 commit 之前拋出
- 這一層不做任何 commit 之後的副作用（通知、收據），那是 SessionEngine 的事
"""
from dataclasses import dataclass
from decimal import Decimal
from math import isfinite
from typing import List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from models import Room, RoomSession, SessionItem, Payment, SessionStatus, new_id, utcnow
from core.state_machine import SessionStateMachine, occupy_room, release_room
from core.locks import with_room_lock, with_session_lock, open_sessions_for_room
from core.exceptions import (
    InvalidInput,
    RoomNotFound,
    RoomAlreadyOccupied,
    SessionNotFound,
    SessionNotClosed,
    SessionHasPayments,
    BalanceNotZero
)
from services.ledger_service import (
    SessionTotals,
    ZERO,
    compute_totals,
    to_money,
    normalize_method
)
from database import transactional

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 64
MAX_METHOD_LENGTH = 8


@dataclass
class SessionSnapshot:
    """一張單據與它在同一個 transaction 內讀到的明細、付款、合計"""
    session: RoomSession
    room: Optional[Room]
    items: List[SessionItem]
    payments: List[Payment]
    totals: SessionTotals


def _clean_customer_name(customer_name: Optional[str]) -> Optional[str]:
    if customer_name is None or not customer_name.strip():
        return None
    customer_name = customer_name.strip()
    if len(customer_name) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Customer name must be at most {MAX_NAME_LENGTH} characters")
    return customer_name


def _validate_item(service_name: str, qty, unit_price) -> Tuple[str, float, Decimal]:
    service_name = (service_name or "").strip()
    if not service_name:
        raise InvalidInput("Service name is required")
    if len(service_name) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Service name must be at most {MAX_NAME_LENGTH} characters")

    try:
        qty = float(qty)
    except (TypeError, ValueError):
        raise InvalidInput(f"Quantity is not a number: {qty!r}")
    if not isfinite(qty) or qty <= 0:
        raise InvalidInput("Quantity must be > 0")

    unit_price = to_money(unit_price, "unit_price")
    if unit_price < ZERO:
        raise InvalidInput("Unit price must be >= 0")

    return service_name, qty, unit_price


def _validate_payment(method: str, amount) -> Tuple[str, Decimal]:
    method = normalize_method(method)
    if not method:
        raise InvalidInput("Payment method is required")
    if len(method) > MAX_METHOD_LENGTH:
        raise InvalidInput(f"Payment method must be at most {MAX_METHOD_LENGTH} characters")

    amount = to_money(amount, "amount")
    if amount <= ZERO:
        raise InvalidInput("Amount must be > 0")

    return method, amount


def _load_locked_session(db: Session, session_id: str) -> RoomSession:
    # populate_existing：就算 identity map 裡已經有這張單據，也用資料庫的最新值覆蓋
    session = with_session_lock(session_id, db).populate_existing().first()
    if not session:
        raise SessionNotFound(session_id)
    return session


def _load_rows(db: Session, session_id: str) -> Tuple[List[SessionItem], List[Payment]]:
    items = db.query(SessionItem).filter(
        SessionItem.session_id == session_id
    ).order_by(SessionItem.added_at, SessionItem.id).populate_existing().all()

    payments = db.query(Payment).filter(
        Payment.session_id == session_id
    ).order_by(Payment.paid_at, Payment.id).populate_existing().all()

    return items, payments


def _load_detail(db: Session, session_id: str) -> SessionSnapshot:
    session = db.query(RoomSession).filter(
        RoomSession.id == session_id
    ).populate_existing().first()
    if not session:
        raise SessionNotFound(session_id)

    items, payments = _load_rows(db, session.id)
    room = db.query(Room).filter(Room.id == session.room_id).first()
    return SessionSnapshot(
        session=session,
        room=room,
        items=items,
        payments=payments,
        totals=compute_totals(items, payments)
    )


class SessionManager:
    """單據生命週期管理器"""

    @staticmethod
    @transactional
    def open_session(db: Session, room_id: str, customer_name: Optional[str] = None) -> Tuple[RoomSession, Room]:
        """
        開單（房間 -> occupied）

        前置條件：
        1. Room 必須存在
        2. Room 上沒有 status=open 的單據

        流程：
        1. 取得並鎖定 Room
        2. 檢查沒有 open 的單據
        3. 建立單據、房間設為 occupied

        返回：
            (RoomSession, Room) tuple

        異常：
            RoomNotFound: Room 不存在
            RoomAlreadyOccupied: 房間已有 open 的單據
            SessionConflict: 並發開單被資料庫的 unique index 擋下（由 @transactional 轉換）
        """
        customer_name = _clean_customer_name(customer_name)

        # 1. 取得並鎖定 Room
        room = with_room_lock(room_id, db).populate_existing().first()
        if not room:
            raise RoomNotFound(room_id)

        # 2. 同一個房間只能有一張 open 的單據
        if open_sessions_for_room(room_id, db).first():
            raise RoomAlreadyOccupied(room_id)

        # 3. 建立單據
        session = RoomSession(
            id=new_id(),
            room_id=room.id,
            customer_name=customer_name,
            start_at=utcnow(),
            status=SessionStatus.OPEN
        )
        db.add(session)
        occupy_room(room)
        db.flush()

        logger.info(f"Opened session {session.id} in room {room.id}")
        return session, room

    @staticmethod
    @transactional
    def add_item(db: Session, session_id: str, service_name: str, qty, unit_price) -> SessionItem:
        """
        新增一筆服務明細

        前置條件：
        - qty > 0、unit_price >= 0、service_name 不可為空
        - 單據存在且為 open（在同一個 transaction 內重新檢查）

        異常：
            InvalidInput: 參數不符合前置條件
            SessionNotFound: 單據不存在
            SessionNotOpen: 單據已結帳或已取消
        """
        service_name, qty, unit_price = _validate_item(service_name, qty, unit_price)

        session = _load_locked_session(db, session_id)
        SessionStateMachine.ensure_open(session)

        item = SessionItem(
            id=new_id(),
            session_id=session.id,
            service_name=service_name,
            qty=qty,
            unit_price=unit_price,
            added_at=utcnow()
        )
        db.add(item)
        db.flush()

        logger.info(f"Added item {service_name} x{qty} @ {unit_price} to session {session.id}")
        return item

    @staticmethod
    @transactional
    def add_payment(db: Session, session_id: str, method: str, amount) -> Payment:
        """
        新增一筆付款

        前置條件：
        - amount > 0、method 不可為空（存入前 trim + casefold）
        - 單據存在且為 open

        異常：
            InvalidInput: 參數不符合前置條件
            SessionNotFound: 單據不存在
            SessionNotOpen: 單據已結帳或已取消
        """
        method, amount = _validate_payment(method, amount)

        session = _load_locked_session(db, session_id)
        SessionStateMachine.ensure_open(session)

        payment = Payment(
            id=new_id(),
            session_id=session.id,
            method=method,
            amount=amount,
            paid_at=utcnow()
        )
        db.add(payment)
        db.flush()

        logger.info(f"Added payment {method} {amount} to session {session.id}")
        return payment

    @staticmethod
    @transactional
    def close_session(db: Session, session_id: str) -> SessionSnapshot:
        """
        結帳（open -> closed，房間 -> available）

        流程：
        1. 重新讀取並鎖定單據、明細、付款（不用任何快取）
        2. 從原始欄位計算 ItemsTotal / PaymentsTotal / Balance
        3. Balance != 0 -> BalanceNotZero（整個 transaction rollback）
        4. 條件式轉換單據狀態、釋放房間

        返回：
            SessionSnapshot（收據就用這裡讀到的明細與付款）

        異常：
            SessionNotFound: 單據不存在
            SessionNotOpen: 單據不是 open（在計算餘額之前檢查）
            BalanceNotZero: 餘額不為零
            SessionConflict: 另一個 transaction 已經轉換了這張單據
        """
        session = _load_locked_session(db, session_id)
        SessionStateMachine.ensure_open(session)

        items, payments = _load_rows(db, session.id)
        totals = compute_totals(items, payments)

        if not totals.is_settled:
            logger.info(
                f"Refusing to close session {session.id}: "
                f"items={totals.items_total} payments={totals.payments_total} balance={totals.balance}"
            )
            raise BalanceNotZero(totals.items_total, totals.payments_total, totals.balance)

        room = SessionManager._end_session(db, session, SessionStatus.CLOSED)
        return SessionSnapshot(session=session, room=room, items=items, payments=payments, totals=totals)

    @staticmethod
    @transactional
    def cancel_session(db: Session, session_id: str) -> SessionSnapshot:
        """
        取消單據（管理用：open -> cancelled，房間 -> available）

        不檢查餘額；已經有付款的單據不能取消

        異常：
            SessionNotFound: 單據不存在
            SessionNotOpen: 單據不是 open
            SessionHasPayments: 單據已有付款
        """
        session = _load_locked_session(db, session_id)
        SessionStateMachine.ensure_open(session)

        items, payments = _load_rows(db, session.id)
        totals = compute_totals(items, payments)

        if payments:
            raise SessionHasPayments(session.id, totals.payments_total)

        room = SessionManager._end_session(db, session, SessionStatus.CANCELLED)
        return SessionSnapshot(session=session, room=room, items=items, payments=payments, totals=totals)

    @staticmethod
    def _end_session(db: Session, session: RoomSession, target: SessionStatus) -> Optional[Room]:
        """轉換到終止狀態並釋放房間（房間紀錄不存在時只轉換單據）"""
        SessionStateMachine.transition(session, target, db)

        room = with_room_lock(session.room_id, db).populate_existing().first()
        if room is not None:
            release_room(room)
        db.flush()
        return room

    @staticmethod
    @transactional
    def get_session_detail(db: Session, session_id: str) -> SessionSnapshot:
        """
        取得單據、明細、付款與合計（唯讀）

        異常：
            SessionNotFound: 單據不存在
        """
        return _load_detail(db, session_id)

    @staticmethod
    @transactional
    def get_closed_session(db: Session, session_id: str) -> SessionSnapshot:
        """
        取得已結帳的單據（補印收據用）

        異常：
            SessionNotFound: 單據不存在
            SessionNotClosed: 單據不是 closed
        """
        detail = _load_detail(db, session_id)
        if detail.session.status != SessionStatus.CLOSED:
            raise SessionNotClosed(session_id, detail.session.status.value)
        return detail

    @staticmethod
    @transactional
    def get_room_id(db: Session, session_id: str) -> str:
        """
        單據所屬的房間 id（單據建立後不會改變）

        異常：
            SessionNotFound: 單據不存在
        """
        row = db.query(RoomSession.room_id).filter(RoomSession.id == session_id).first()
        if not row:
            raise SessionNotFound(session_id)
        return row.room_id

    @staticmethod
    @transactional
    def list_active_sessions(db: Session) -> List[RoomSession]:
        """所有 open 的單據，最新的在前"""
        return db.query(RoomSession).filter(
            RoomSession.status == SessionStatus.OPEN
        ).order_by(RoomSession.start_at.desc()).all()
