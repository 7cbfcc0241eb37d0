"""
Ledger calculations: line totals, session totals and money normalization.

Pure calculation, no state transitions. Totals are always recomputed from
the raw qty / unit_price / amount columns; nothing here reads a cached total.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Union

from core.exceptions import InvalidInput

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, str]


@dataclass(frozen=True)
class SessionTotals:
    items_total: Decimal
    payments_total: Decimal

    @property
    def balance(self) -> Decimal:
        return self.items_total - self.payments_total

    @property
    def is_settled(self) -> bool:
        # Decimal equality, no tolerance
        return self.balance == ZERO


def to_money(value: MoneyLike, field: str = "amount") -> Decimal:
    """
    Convert a value to a two-digit fixed-point Decimal.

    Floats are rejected. Values with more than two fractional digits are
    rejected, not rounded.
    """
    if isinstance(value, float):
        raise InvalidInput(f"{field} must be a decimal, not a float")
    try:
        amount = Decimal(str(value))
        quantized = amount.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{field} is not a valid amount: {value!r}")
    if amount != quantized:
        raise InvalidInput(f"{field} must have at most two decimal places: {value}")
    return quantized


def line_total(qty: float, unit_price: Decimal) -> Decimal:
    """qty × unit_price, rounded half-up to cents."""
    return (Decimal(str(qty)) * Decimal(unit_price)).quantize(CENT, rounding=ROUND_HALF_UP)


def items_total(items: Iterable) -> Decimal:
    return sum((line_total(item.qty, item.unit_price) for item in items), ZERO)


def payments_total(payments: Iterable) -> Decimal:
    return sum((Decimal(payment.amount) for payment in payments), ZERO).quantize(CENT)


def compute_totals(items: Iterable, payments: Iterable) -> SessionTotals:
    return SessionTotals(
        items_total=items_total(items),
        payments_total=payments_total(payments)
    )


def normalize_method(method: str) -> str:
    """Payment method is stored trimmed and case-folded (e.g. ' Cash ' -> 'cash')."""
    return (method or "").strip().casefold()
