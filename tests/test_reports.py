"""
報表測試：每日營收與房間使用率
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from database import build_engine, build_sessionmaker
from models import RoomSession, SessionItem, Payment, SessionStatus, new_id
from core.exceptions import StoreFailure
from core.room_manager import RoomManager
from services.report_service import daily_revenue, room_usage


def add_session(db, room, start_at, end_at=None, status=SessionStatus.CLOSED):
    session = RoomSession(id=new_id(), room_id=room.id, start_at=start_at, end_at=end_at, status=status)
    db.add(session)
    db.flush()
    return session


def add_item(db, session, qty, price, at):
    db.add(SessionItem(id=new_id(), session_id=session.id, service_name="Service", qty=qty,
                       unit_price=Decimal(price), added_at=at))


def add_payment(db, session, method, amount, at):
    db.add(Payment(id=new_id(), session_id=session.id, method=method, amount=Decimal(amount), paid_at=at))


class TestDailyRevenue:

    def test_totals_for_one_day(self, db, room):
        day = datetime(2024, 3, 1, 10, 0)
        s = add_session(db, room, day, day + timedelta(hours=1))
        add_item(db, s, 1, "300.00", day)
        add_item(db, s, 2, "10.00", day + timedelta(minutes=5))
        add_payment(db, s, "cash", "200.00", day + timedelta(minutes=50))
        add_payment(db, s, "card", "100.00", day + timedelta(minutes=55))
        add_payment(db, s, "cash", "20.00", day + timedelta(minutes=56))

        # 前一天與後一天的資料不算
        add_item(db, s, 1, "999.00", day - timedelta(days=1))
        add_payment(db, s, "cash", "999.00", datetime(2024, 3, 2, 0, 0))
        db.commit()

        report = daily_revenue(db, date(2024, 3, 1))

        assert report.items_total == Decimal("320.00")
        assert report.payments_total == Decimal("320.00")
        assert report.balance == Decimal("0.00")
        assert report.payments_by_method == {"card": Decimal("100.00"), "cash": Decimal("220.00")}

    def test_empty_day(self, db):
        report = daily_revenue(db, date(2020, 1, 1))
        assert report.items_total == Decimal("0.00")
        assert report.payments_by_method == {}


class TestRoomUsage:

    def test_counts_closed_sessions_in_range(self, db, room):
        other = RoomManager.create_room(db, "Massage 1")
        base = datetime(2024, 3, 1, 9, 0)

        add_session(db, room, base, base + timedelta(minutes=30))
        add_session(db, room, base + timedelta(hours=2), base + timedelta(hours=2, minutes=45))
        add_session(db, other, base, base + timedelta(minutes=90))
        # 取消的、還開著的、範圍外的都不算
        add_session(db, other, base, base + timedelta(minutes=10), status=SessionStatus.CANCELLED)
        add_session(db, other, base + timedelta(hours=3), None, status=SessionStatus.OPEN)
        add_session(db, room, base - timedelta(days=30), base - timedelta(days=30) + timedelta(minutes=60))
        db.commit()

        report = room_usage(db, base - timedelta(days=1), base + timedelta(days=1))

        assert [(r.room_name, r.sessions_count, r.total_minutes) for r in report.rows] == [
            ("Massage 1", 1, 90.0),
            ("Hot Room 1", 2, 75.0),
        ]

    def test_default_range_is_last_week(self, db, pos, room):
        session = pos.open_session(db, room.id)
        pos.close_session(db, session.id)

        report = room_usage(db)

        assert report.to_utc - report.from_utc == timedelta(days=7)
        assert [r.room_id for r in report.rows] == [room.id]


class TestStoreFailure:

    def test_query_failure_becomes_store_failure(self, tmp_path):
        # 沒有 create_all 的資料庫：查詢會失敗
        engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        db = build_sessionmaker(engine)()
        try:
            with pytest.raises(StoreFailure):
                daily_revenue(db, date(2024, 3, 1))
            with pytest.raises(StoreFailure):
                room_usage(db)
            assert not db.in_transaction()
        finally:
            db.close()
            engine.dispose()
