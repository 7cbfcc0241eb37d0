"""
Receipt snapshot: the frozen item / payment rows and totals of a closed session.

The snapshot is built from the exact rows read inside the closing
transaction and handed to a receipt printer after commit.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Tuple

from services.ledger_service import line_total, compute_totals


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    qty: float
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return line_total(self.qty, self.unit_price)


@dataclass(frozen=True)
class ReceiptPayment:
    method: str
    amount: Decimal


@dataclass(frozen=True)
class ReceiptSnapshot:
    room_name: str
    session_id: str
    start_at: datetime
    end_at: datetime
    lines: Tuple[ReceiptLine, ...]
    items_total: Decimal
    payments: Tuple[ReceiptPayment, ...]
    payments_total: Decimal
    balance: Decimal
    title: str = "HAMAM POS RECEIPT"
    business_name: str = ""

    def to_dict(self) -> dict:
        return {
            "room_name": self.room_name,
            "session_id": self.session_id,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "lines": [
                {"name": l.name, "qty": l.qty, "unit_price": l.unit_price, "total": l.total}
                for l in self.lines
            ],
            "items_total": self.items_total,
            "payments": [{"method": p.method, "amount": p.amount} for p in self.payments],
            "payments_total": self.payments_total,
            "balance": self.balance,
        }


def build_receipt_snapshot(
    session,
    items: List,
    payments: List,
    room_name: str = None,
    title: str = "HAMAM POS RECEIPT",
    business_name: str = ""
) -> ReceiptSnapshot:
    """
    Build a receipt snapshot from a session and its item / payment rows.

    Totals are recomputed from the same rows that go on the receipt, so the
    printed lines always add up to the printed totals. When the room record
    is gone the room id is printed instead of its name.
    """
    totals = compute_totals(items, payments)
    return ReceiptSnapshot(
        room_name=room_name or session.room_id,
        session_id=session.id,
        start_at=session.start_at,
        end_at=session.end_at,
        lines=tuple(
            ReceiptLine(name=item.service_name, qty=item.qty, unit_price=Decimal(item.unit_price))
            for item in items
        ),
        items_total=totals.items_total,
        payments=tuple(
            ReceiptPayment(method=payment.method.upper(), amount=Decimal(payment.amount))
            for payment in payments
        ),
        payments_total=totals.payments_total,
        balance=totals.balance,
        title=title,
        business_name=business_name,
    )
