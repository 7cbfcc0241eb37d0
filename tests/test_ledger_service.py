"""
Ledger 計算測試（純函式，不需要資料庫）
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from core.exceptions import InvalidInput
from services.ledger_service import (
    SessionTotals,
    compute_totals,
    line_total,
    normalize_method,
    to_money
)


def item(qty, price):
    return SimpleNamespace(qty=qty, unit_price=Decimal(price))


def payment(amount):
    return SimpleNamespace(amount=Decimal(amount))


class TestToMoney:

    @pytest.mark.parametrize("value,expected", [
        (Decimal("320"), Decimal("320.00")),
        ("10.5", Decimal("10.50")),
        (7, Decimal("7.00")),
        ("0.01", Decimal("0.01")),
    ])
    def test_valid_amounts(self, value, expected):
        assert to_money(value) == expected

    def test_rejects_float(self):
        with pytest.raises(InvalidInput):
            to_money(0.1)

    @pytest.mark.parametrize("value", ["10.001", "abc", "", "NaN"])
    def test_rejects_bad_values(self, value):
        with pytest.raises(InvalidInput):
            to_money(value)


class TestTotals:

    def test_line_total_is_exact(self):
        assert line_total(2, Decimal("10.00")) == Decimal("20.00")
        assert line_total(3, Decimal("0.10")) == Decimal("0.30")

    def test_fractional_quantity_rounds_half_up(self):
        assert line_total(0.5, Decimal("0.05")) == Decimal("0.03")
        assert line_total(1.5, Decimal("33.33")) == Decimal("50.00")

    def test_scenario_totals(self):
        totals = compute_totals(
            [item(1, "300.00"), item(2, "10.00")],
            [payment("100.00"), payment("220.00")]
        )
        assert totals.items_total == Decimal("320.00")
        assert totals.payments_total == Decimal("320.00")
        assert totals.balance == Decimal("0.00")
        assert totals.is_settled

    def test_no_tolerance(self):
        totals = SessionTotals(items_total=Decimal("10.00"), payments_total=Decimal("9.99"))
        assert totals.balance == Decimal("0.01")
        assert not totals.is_settled

    def test_empty_session_is_settled(self):
        assert compute_totals([], []).is_settled


class TestNormalizeMethod:

    @pytest.mark.parametrize("raw,expected", [(" Cash ", "cash"), ("CARD", "card"), ("", ""), (None, "")])
    def test_trim_and_casefold(self, raw, expected):
        assert normalize_method(raw) == expected
