"""
Session Engine 測試

涵蓋：
- 完整流程：開單 -> 明細 -> 付款 -> 結帳
- 餘額必須剛好為零才能結帳（沒有容許誤差）
- 單據與房間的連動（occupied <-> available）
- 事件只在 commit 之後廣播
- 收據輸出失敗不會回滾結帳
- 管理用的取消
"""
from decimal import Decimal

import pytest

from models import Room, RoomSession, SessionItem, Payment, RoomStatus, SessionStatus
from core.events import ROOM_UPDATED, SESSION_OPENED, SESSION_UPDATED, SESSION_CLOSED, SESSION_CANCELLED
from core.exceptions import (
    BalanceNotZero,
    InvalidInput,
    RoomAlreadyOccupied,
    RoomNotFound,
    SessionHasPayments,
    SessionNotClosed,
    SessionNotFound,
    SessionNotOpen
)
from core.room_manager import RoomManager
from core.session_engine import SessionEngine
from core.session_manager import SessionManager
from tests.conftest import RecordingPrinter


# ===== OPEN =====

class TestOpenSession:

    def test_open_marks_room_occupied(self, db, pos, room, reload):
        session = pos.open_session(db, room.id, "  Ahmet  ")

        assert session.status == SessionStatus.OPEN
        assert session.customer_name == "Ahmet"
        assert session.end_at is None
        assert reload(Room, room.id).status == RoomStatus.OCCUPIED

    def test_blank_customer_name_is_stored_as_null(self, db, pos, room):
        session = pos.open_session(db, room.id, "   ")
        assert session.customer_name is None

    def test_unknown_room(self, db, pos):
        with pytest.raises(RoomNotFound):
            pos.open_session(db, "missing-room")

    def test_second_open_on_same_room_is_rejected(self, db, pos, room, session_factory):
        pos.open_session(db, room.id)

        with pytest.raises(RoomAlreadyOccupied):
            pos.open_session(db, room.id)

        check = session_factory()
        try:
            open_count = check.query(RoomSession).filter(
                RoomSession.room_id == room.id,
                RoomSession.status == SessionStatus.OPEN
            ).count()
            check.commit()
        finally:
            check.close()
        assert open_count == 1

    def test_rejected_write_leaves_no_open_transaction(self, db, pos, room, reload):
        pos.open_session(db, room.id)

        with pytest.raises(RoomAlreadyOccupied):
            pos.open_session(db, room.id)

        assert room.id
        assert not db.in_transaction()
        assert reload(Room, room.id).status == RoomStatus.OCCUPIED

    def test_open_publishes_room_then_session_event(self, db, pos, room, observer):
        session = pos.open_session(db, room.id)

        assert observer.topics() == [(ROOM_UPDATED, room.id), (SESSION_OPENED, session.id)]
        assert observer.events[0].extra == {"status": "occupied"}

    def test_failed_open_publishes_nothing(self, db, pos, room, observer):
        pos.open_session(db, room.id)
        observer.events.clear()

        with pytest.raises(RoomAlreadyOccupied):
            pos.open_session(db, room.id)
        assert observer.events == []


# ===== ITEMS & PAYMENTS =====

class TestAppendRows:

    def test_add_item_and_payment(self, db, pos, room, observer):
        session = pos.open_session(db, room.id)
        observer.events.clear()

        item = pos.add_item(db, session.id, " Massage ", 1, Decimal("300.00"))
        payment = pos.add_payment(db, session.id, "  CASH ", Decimal("100.00"))

        assert item.service_name == "Massage"
        assert payment.method == "cash"
        assert observer.topics() == [(SESSION_UPDATED, session.id), (SESSION_UPDATED, session.id)]

        detail = pos.get_session_detail(db, session.id)
        assert detail.totals.items_total == Decimal("300.00")
        assert detail.totals.payments_total == Decimal("100.00")
        assert detail.totals.balance == Decimal("200.00")

    @pytest.mark.parametrize("qty,price", [(0, "10.00"), (-1, "10.00"), (1, "-0.01"), (1, "10.005")])
    def test_invalid_item_is_rejected_without_insert(self, db, pos, room, qty, price, session_factory):
        session = pos.open_session(db, room.id)

        with pytest.raises(InvalidInput):
            pos.add_item(db, session.id, "Tea", qty, Decimal(price))

        check = session_factory()
        try:
            assert check.query(SessionItem).count() == 0
            check.commit()
        finally:
            check.close()

    def test_empty_service_name_is_rejected(self, db, pos, room):
        session = pos.open_session(db, room.id)
        with pytest.raises(InvalidInput):
            pos.add_item(db, session.id, "   ", 1, Decimal("5.00"))

    def test_zero_payment_is_rejected(self, db, pos, room):
        session = pos.open_session(db, room.id)
        with pytest.raises(InvalidInput):
            pos.add_payment(db, session.id, "cash", Decimal("0"))

    def test_unknown_session(self, db, pos):
        with pytest.raises(SessionNotFound):
            pos.add_item(db, "missing", "Tea", 1, Decimal("10.00"))
        with pytest.raises(SessionNotFound):
            pos.add_payment(db, "missing", "cash", Decimal("10.00"))

    def test_rows_are_not_accepted_after_close(self, db, pos, room, session_factory, observer):
        session_id = pos.open_session(db, room.id).id
        pos.close_session(db, session_id)
        observer.events.clear()

        with pytest.raises(SessionNotOpen):
            pos.add_item(db, session_id, "Tea", 1, Decimal("10.00"))
        with pytest.raises(SessionNotOpen):
            pos.add_payment(db, session_id, "cash", Decimal("10.00"))

        check = session_factory()
        try:
            assert check.query(SessionItem).count() == 0
            assert check.query(Payment).count() == 0
            check.commit()
        finally:
            check.close()
        assert observer.events == []


# ===== CLOSE =====

class TestCloseSession:

    def test_full_scenario(self, db, pos, room, printer, observer, reload):
        session_id = pos.open_session(db, room.id).id
        assert reload(Room, room.id).status == RoomStatus.OCCUPIED

        pos.add_item(db, session_id, "Massage", 1, Decimal("300.00"))
        pos.add_item(db, session_id, "Tea", 2, Decimal("10.00"))
        assert pos.get_session_detail(db, session_id).totals.items_total == Decimal("320.00")

        with pytest.raises(BalanceNotZero) as exc_info:
            pos.close_session(db, session_id)
        assert exc_info.value.items_total == Decimal("320.00")
        assert exc_info.value.payments_total == Decimal("0.00")
        assert exc_info.value.balance == Decimal("320.00")
        assert reload(RoomSession, session_id).status == SessionStatus.OPEN

        pos.add_payment(db, session_id, "cash", Decimal("320.00"))
        observer.events.clear()

        result = pos.close_session(db, session_id)

        assert result.session.status == SessionStatus.CLOSED
        assert result.receipt_delivered is True
        assert result.receipt.balance == Decimal("0.00")
        assert result.receipt.items_total == Decimal("320.00")
        assert [line.total for line in result.receipt.lines] == [Decimal("300.00"), Decimal("20.00")]
        assert result.receipt.room_name == "Hot Room 1"
        assert printer.receipts == [result.receipt]

        stored = reload(RoomSession, session_id)
        assert stored.status == SessionStatus.CLOSED
        assert stored.end_at is not None
        assert stored.end_at >= stored.start_at
        assert reload(Room, room.id).status == RoomStatus.AVAILABLE

        assert observer.topics() == [(SESSION_CLOSED, session_id), (ROOM_UPDATED, room.id)]
        assert observer.events[1].extra == {"status": "available"}

    def test_close_empty_session(self, db, pos, room):
        session = pos.open_session(db, room.id)
        result = pos.close_session(db, session.id)

        assert result.totals.balance == Decimal("0.00")
        assert result.receipt.lines == ()

    def test_overpayment_cannot_close(self, db, pos, room):
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Tea", 1, Decimal("10.00"))
        pos.add_payment(db, session.id, "card", Decimal("10.01"))

        with pytest.raises(BalanceNotZero) as exc_info:
            pos.close_session(db, session.id)
        assert exc_info.value.balance == Decimal("-0.01")

    def test_closing_twice_reports_not_open(self, db, pos, room):
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Scrub", 1, Decimal("150.00"))
        pos.add_payment(db, session.id, "card", Decimal("150.00"))
        pos.close_session(db, session.id)

        with pytest.raises(SessionNotOpen):
            pos.close_session(db, session.id)

    def test_unknown_session(self, db, pos):
        with pytest.raises(SessionNotFound):
            pos.close_session(db, "missing")

    def test_failed_close_publishes_nothing_and_prints_nothing(self, db, pos, room, printer, observer):
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Tea", 1, Decimal("10.00"))
        observer.events.clear()

        with pytest.raises(BalanceNotZero):
            pos.close_session(db, session.id)

        assert observer.events == []
        assert printer.receipts == []

    def test_close_sees_rows_committed_by_another_request(self, db, pos, room, session_factory):
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Massage", 1, Decimal("100.00"))
        pos.add_payment(db, session.id, "cash", Decimal("100.00"))
        assert pos.get_session_detail(db, session.id).totals.balance == Decimal("0.00")

        other = session_factory()
        try:
            pos.add_item(other, session.id, "Tea", 1, Decimal("50.00"))
        finally:
            other.close()

        with pytest.raises(BalanceNotZero) as exc_info:
            pos.close_session(db, session.id)
        assert exc_info.value.items_total == Decimal("150.00")
        assert exc_info.value.balance == Decimal("50.00")

    def test_receipt_failure_does_not_undo_close(self, db, hub, room, observer, reload):
        failing = SessionEngine(hub, RecordingPrinter(fail=True))
        session = failing.open_session(db, room.id)
        observer.events.clear()

        result = failing.close_session(db, session.id)

        assert result.receipt_delivered is False
        assert "printer offline" in result.receipt_error
        assert reload(RoomSession, session.id).status == SessionStatus.CLOSED
        assert reload(Room, room.id).status == RoomStatus.AVAILABLE
        assert observer.topics() == [(SESSION_CLOSED, session.id), (ROOM_UPDATED, room.id)]

    def test_room_can_be_reopened_after_close(self, db, pos, room):
        first = pos.open_session(db, room.id)
        pos.close_session(db, first.id)

        second = pos.open_session(db, room.id)
        assert second.id != first.id
        assert [s.id for s in pos.list_active_sessions(db)] == [second.id]


# ===== RECEIPT RETRY =====

class TestReprintReceipt:

    def test_reprint_after_failed_delivery(self, db, hub, room):
        printer = RecordingPrinter(fail=True)
        pos = SessionEngine(hub, printer)
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Massage", 1, Decimal("300.00"))
        pos.add_payment(db, session.id, "cash", Decimal("300.00"))
        assert pos.close_session(db, session.id).receipt_delivered is False

        printer.fail = False
        result = pos.reprint_receipt(db, session.id)

        assert result.delivered is True
        assert printer.receipts[0].session_id == session.id
        assert printer.receipts[0].items_total == Decimal("300.00")
        assert printer.receipts[0].payments[0].method == "CASH"

    def test_reprint_requires_closed_session(self, db, pos, room):
        session = pos.open_session(db, room.id)
        with pytest.raises(SessionNotClosed):
            pos.reprint_receipt(db, session.id)


# ===== CANCEL =====

class TestCancelSession:

    def test_cancel_frees_room_without_balance_check(self, db, pos, room, observer, reload):
        session = pos.open_session(db, room.id)
        pos.add_item(db, session.id, "Massage", 1, Decimal("300.00"))
        observer.events.clear()

        cancelled = pos.cancel_session(db, session.id)

        assert cancelled.status == SessionStatus.CANCELLED
        assert cancelled.end_at is not None
        assert reload(Room, room.id).status == RoomStatus.AVAILABLE
        assert observer.topics() == [(SESSION_CANCELLED, session.id), (ROOM_UPDATED, room.id)]

    def test_cancel_with_payments_is_rejected(self, db, pos, room, reload):
        session_id = pos.open_session(db, room.id).id
        pos.add_payment(db, session_id, "cash", Decimal("50.00"))

        with pytest.raises(SessionHasPayments):
            pos.cancel_session(db, session_id)
        assert reload(RoomSession, session_id).status == SessionStatus.OPEN
        assert reload(Room, room.id).status == RoomStatus.OCCUPIED

    def test_cancelled_session_is_terminal(self, db, pos, room):
        session_id = pos.open_session(db, room.id).id
        pos.cancel_session(db, session_id)

        with pytest.raises(SessionNotOpen):
            pos.close_session(db, session_id)
        with pytest.raises(SessionNotOpen):
            pos.cancel_session(db, session_id)


# ===== ROOM COUPLING =====

class TestRoomCoupling:

    def test_operator_status_survives_until_open(self, db, pos, room, reload):
        RoomManager.update_room(db, room.id, status="cleaning")
        assert reload(Room, room.id).status == RoomStatus.CLEANING

        session = pos.open_session(db, room.id)
        assert reload(Room, room.id).status == RoomStatus.OCCUPIED

        pos.close_session(db, session.id)
        assert reload(Room, room.id).status == RoomStatus.AVAILABLE

    def test_sessions_on_different_rooms_are_independent(self, db, pos, room, reload):
        other_room = RoomManager.create_room(db, "Massage 1")
        a = pos.open_session(db, room.id)
        b = pos.open_session(db, other_room.id)

        pos.close_session(db, a.id)

        assert reload(Room, room.id).status == RoomStatus.AVAILABLE
        assert reload(Room, other_room.id).status == RoomStatus.OCCUPIED
        assert reload(RoomSession, b.id).status == SessionStatus.OPEN


# ===== LOOKUPS =====

class TestLookups:

    def test_lookups_leave_no_open_transaction(self, db, pos, room):
        session_id = pos.open_session(db, room.id).id

        with pytest.raises(SessionNotClosed):
            SessionManager.get_closed_session(db, session_id)
        assert not db.in_transaction()

        pos.close_session(db, session_id)
        detail = SessionManager.get_closed_session(db, session_id)
        assert detail.session.status == SessionStatus.CLOSED
        assert detail.room.name == "Hot Room 1"
        assert not db.in_transaction()

    def test_get_room_id(self, db, pos, room):
        session_id = pos.open_session(db, room.id).id

        assert SessionManager.get_room_id(db, session_id) == room.id
        with pytest.raises(SessionNotFound):
            SessionManager.get_room_id(db, "missing")
