from decimal import Decimal

import pytest

from tulemar.utils.pricing import (
    DELIVERY_FEE,
    calculate_totals,
    delivery_fee_for,
    to_cents,
    to_money,
)


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(1) == Decimal("1.00")
    assert to_money(0.1 + 0.2) == Decimal("0.30")


@pytest.mark.parametrize("value,cents", [("4.50", 450), (Decimal("0.01"), 1), (12, 1200), ("19.995", 2000)])
def test_to_cents(value, cents):
    assert to_cents(value) == cents


def test_delivery_fee_waived_at_threshold():
    assert delivery_fee_for("49.99") == DELIVERY_FEE
    assert delivery_fee_for("50.00") == Decimal("0.00")


def test_calculate_totals_small_order():
    totals = calculate_totals([("12.00", 2), ("1.50", 4)])
    assert totals["subtotal"] == Decimal("30.00")
    assert totals["tax_amount"] == Decimal("3.90")
    assert totals["delivery_fee"] == Decimal("5.00")
    assert totals["total_amount"] == Decimal("38.90")


def test_calculate_totals_free_delivery():
    totals = calculate_totals([("25.00", 2)])
    assert totals["delivery_fee"] == Decimal("0.00")
    assert totals["total_amount"] == Decimal("56.50")
