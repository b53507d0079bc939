from decimal import Decimal

import pytest

from ticketbot.totals import amount_or_fallback, format_money, parse_amount


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$15.50", Decimal("15.50")),
        ("Total: $ 23.1 (incl. fees)", Decimal("23.10")),
        ("1,204.99 USD", Decimal("1204.99")),
        ("12", Decimal("12.00")),
        ("about 9.999", Decimal("10.00")),
    ],
)
def test_parse_amount_reads_leading_number(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "see link", "$"])
def test_parse_amount_without_number(raw):
    assert parse_amount(raw) is None


def test_fallback_used_when_total_unparseable():
    assert amount_or_fallback("ask the customer", Decimal("5")) == Decimal("5.00")
    assert amount_or_fallback("$7.25", Decimal("5")) == Decimal("7.25")


def test_format_money():
    assert format_money(Decimal("3.5")) == "$3.50"
