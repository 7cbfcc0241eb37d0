"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- NotFound：房間 / 單據不存在
- InvalidState：狀態不允許此操作（房間已被佔用、單據不是 open ...）
- InvariantViolation：結帳時餘額不為零
- Conflict：並發 transaction 碰撞（呼叫端可以重試）
- StoreFailure：資料庫故障（暫時性，呼叫端可以重試）
"""
from decimal import Decimal


class HamamPOSException(Exception):
    """所有業務異常的基類"""
    pass


class InvalidInput(HamamPOSException):
    """輸入值不符合前置條件（數量、金額、名稱）"""
    pass


# ============ 分類 ============

class NotFound(HamamPOSException):
    pass


class InvalidState(HamamPOSException):
    pass


class InvariantViolation(HamamPOSException):
    pass


class Conflict(HamamPOSException):
    pass


class StoreFailure(HamamPOSException):
    """Ledger store 的 transaction / commit 失敗"""
    pass


# ============ Room 相關異常 ============

class RoomNotFound(NotFound):
    """房間不存在"""
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


class RoomAlreadyOccupied(InvalidState):
    """房間已經有 open 的單據"""
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"There is already an open session in room {room_id}")


class InvalidRoomStatus(InvalidState):
    """操作員不能直接設定的房間狀態"""
    pass


# ============ Session 相關異常 ============

class SessionNotFound(NotFound):
    """單據不存在"""
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionNotOpen(InvalidState):
    """單據不是 open 狀態（已結帳或已取消）"""
    def __init__(self, session_id, status=None):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is not open (status: {status})")


class SessionNotClosed(InvalidState):
    """單據尚未結帳，不能補印收據"""
    def __init__(self, session_id, status=None):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is not closed (status: {status})")


class SessionHasPayments(InvalidState):
    """已經收過錢的單據不能取消"""
    def __init__(self, session_id, payments_total: Decimal):
        self.session_id = session_id
        self.payments_total = payments_total
        super().__init__(
            f"Session {session_id} already has payments ({payments_total}), cannot cancel"
        )


class BalanceNotZero(InvariantViolation):
    """結帳時 ItemsTotal - PaymentsTotal 不為零"""
    def __init__(self, items_total: Decimal, payments_total: Decimal, balance: Decimal):
        self.items_total = items_total
        self.payments_total = payments_total
        self.balance = balance
        super().__init__(
            f"Cannot close session. Balance must be zero "
            f"(items={items_total}, payments={payments_total}, balance={balance})"
        )


# ============ 並發異常 ============

class SessionConflict(Conflict):
    """兩個 transaction 同時修改同一個房間 / 單據"""
    pass
