from decimal import Decimal
from itertools import permutations

import pytest

from errors import ValidationError
from pricing import line_subtotal, parse_deposit, price_items, to_money


def test_subtotal_is_rate_times_quantity():
    assert line_subtotal(Decimal("2500.50"), 3) == Decimal("7501.50")


def test_total_is_exact_sum_of_subtotals():
    pairs = [(Decimal("0.10"), 1), (Decimal("0.20"), 1), (Decimal("15000"), 2)]
    subtotals, total = price_items(pairs)
    assert subtotals == [Decimal("0.10"), Decimal("0.20"), Decimal("30000.00")]
    assert total == Decimal("30000.30")


def test_total_does_not_depend_on_item_order():
    pairs = [(Decimal("19.99"), 3), (Decimal("0.01"), 7), (Decimal("1234.56"), 2)]
    totals = {price_items(p)[1] for p in permutations(pairs)}
    assert totals == {Decimal("2529.16")}


def test_empty_list_totals_zero():
    assert price_items([]) == ([], Decimal("0.00"))


def test_floats_do_not_drift():
    assert to_money(0.1) + to_money(0.2) == Decimal("0.30")


def test_invalid_quantity_rejected():
    with pytest.raises(ValidationError):
        line_subtotal(Decimal("10"), 0)


@pytest.mark.parametrize("raw, expected", [
    (None, Decimal("0.00")),
    ("", Decimal("0.00")),
    ("abc", Decimal("0.00")),
    ("5000", Decimal("5000.00")),
    (1250.5, Decimal("1250.50")),
])
def test_deposit_parsing(raw, expected):
    assert parse_deposit(raw) == expected


def test_negative_deposit_rejected():
    with pytest.raises(ValidationError):
        parse_deposit("-10")
