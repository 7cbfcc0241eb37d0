"""
Reporting service: daily revenue and room usage.

All timestamps are UTC. Item totals are recomputed from qty x unit_price
of the raw rows, never from a stored total.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from models import Room, RoomSession, SessionItem, Payment, SessionStatus, utcnow
from services.ledger_service import items_total, ZERO, CENT
from database import transactional


@dataclass
class DailyRevenue:
    date: date
    items_total: Decimal
    payments_total: Decimal
    balance: Decimal
    payments_by_method: Dict[str, Decimal]


@dataclass
class RoomUsageRow:
    room_id: str
    room_name: str
    sessions_count: int
    total_minutes: float


@dataclass
class RoomUsage:
    from_utc: datetime
    to_utc: datetime
    rows: List[RoomUsageRow]


@transactional
def daily_revenue(db: Session, day: Optional[date] = None) -> DailyRevenue:
    """
    Totals for one UTC calendar day: items sum, payments sum, balance and
    payments grouped by method. Defaults to today.
    """
    day = day or utcnow().date()
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)

    items = db.query(SessionItem).filter(
        SessionItem.added_at >= start,
        SessionItem.added_at < end
    ).all()

    payments = db.query(Payment).filter(
        Payment.paid_at >= start,
        Payment.paid_at < end
    ).all()

    by_method: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for payment in payments:
        by_method[payment.method] += Decimal(payment.amount)

    items_sum = items_total(items)
    payments_sum = sum(by_method.values(), ZERO).quantize(CENT)

    return DailyRevenue(
        date=day,
        items_total=items_sum,
        payments_total=payments_sum,
        balance=items_sum - payments_sum,
        payments_by_method={method: amount.quantize(CENT) for method, amount in sorted(by_method.items())}
    )


@transactional
def room_usage(db: Session, from_utc: Optional[datetime] = None, to_utc: Optional[datetime] = None) -> RoomUsage:
    """
    Per-room count and total minutes of sessions closed within [from, to].

    Defaults: to = now, from = to - 7 days. Only closed sessions whose
    end time falls in the range are counted. Rows are sorted by minutes,
    busiest room first.
    """
    to_utc = to_utc or utcnow()
    from_utc = from_utc or to_utc - timedelta(days=7)

    sessions = db.query(RoomSession).filter(
        RoomSession.status == SessionStatus.CLOSED,
        RoomSession.end_at.isnot(None),
        RoomSession.end_at >= from_utc,
        RoomSession.end_at <= to_utc
    ).all()

    room_names = {room_id: name for room_id, name in db.query(Room.id, Room.name).all()}

    counts: Dict[str, int] = defaultdict(int)
    minutes: Dict[str, float] = defaultdict(float)
    for session in sessions:
        counts[session.room_id] += 1
        minutes[session.room_id] += (session.end_at - session.start_at).total_seconds() / 60

    rows = [
        RoomUsageRow(
            room_id=room_id,
            room_name=room_names.get(room_id, room_id),
            sessions_count=counts[room_id],
            total_minutes=round(minutes[room_id], 1)
        )
        for room_id in counts
    ]
    rows.sort(key=lambda row: row.total_minutes, reverse=True)

    return RoomUsage(from_utc=from_utc, to_utc=to_utc, rows=rows)
