"""Unit tests for date helpers"""

import pytest
from datetime import date, datetime
from statement_ledger.utils.date_utils import (
    add_months,
    coerce_cell_date,
    excel_serial_to_date,
    parse_dash_date,
    parse_dotted_date,
    parse_slash_date,
)


def test_add_months_clamps_to_month_end():
    """Test day is clamped when the target month is shorter"""
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 12, 15), 1) == date(2026, 1, 15)


def test_excel_serial_to_date():
    """Test Excel serial day numbers"""
    assert excel_serial_to_date(45658) == date(2025, 1, 1)


def test_parse_dash_date():
    assert parse_dash_date("05-07-2025") == date(2025, 7, 5)
    with pytest.raises(ValueError):
        parse_dash_date("2025-07-05")


def test_parse_slash_date_expands_two_digit_year():
    assert parse_slash_date("5/7/25") == date(2025, 7, 5)
    assert parse_slash_date("10/08/2025") == date(2025, 8, 10)


def test_parse_dotted_date():
    assert parse_dotted_date("05.07.25") == date(2025, 7, 5)
    assert parse_dotted_date("no date here") is None
    assert parse_dotted_date("31.02.25") is None


def test_coerce_cell_date_accepts_each_cell_kind():
    """Test datetime, date, serial and string cells"""
    assert coerce_cell_date(datetime(2025, 7, 5, 12, 0)) == date(2025, 7, 5)
    assert coerce_cell_date(date(2025, 7, 5)) == date(2025, 7, 5)
    assert coerce_cell_date(45658) == date(2025, 1, 1)
    assert coerce_cell_date("5/7/25") == date(2025, 7, 5)


def test_coerce_cell_date_rejects_empty():
    with pytest.raises(ValueError):
        coerce_cell_date(None)
