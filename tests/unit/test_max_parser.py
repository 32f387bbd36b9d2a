"""Unit tests for the MAX statement parser"""

import pytest
from datetime import date
from statement_ledger.domain.exceptions import MetadataExtractionError
from statement_ledger.domain.models import PaymentType
from statement_ledger.parsers import max_parser
from statement_ledger.parsers.base import read_workbook
from statement_ledger.parsers.max_parser import MaxParser


def test_can_parse_max_file(max_workbook, statement_rows):
    path = max_workbook([statement_rows.max("שופרסל דיל", 250.5)])

    assert MaxParser("08.25 - 7229.xlsx").can_parse(path) is True


def test_parse_regular_rows(max_workbook, statement_rows):
    """Test metadata and row fields of a plain ILS statement"""
    path = max_workbook(
        [
            statement_rows.max("שופרסל  דיל", 250.5),
            statement_rows.max("סונול", 180.0, deal_date="07-07-2025", category="דלק"),
        ]
    )

    result = MaxParser("08.25 - 7229.xlsx").parse(path)

    assert result.metadata.card_last4 == "7229"
    assert result.metadata.statement_month == "08/2025"
    assert len(result.transactions) == 2
    assert result.errors == []

    first = result.transactions[0]
    assert first.business_name == "שופרסל דיל"
    assert first.deal_date == date(2025, 7, 5)
    assert first.bank_charge_date == date(2025, 8, 10)
    assert first.charged_amount_ils == 250.5
    assert first.original_currency == "ILS"
    assert first.payment_type == PaymentType.ONE_TIME
    assert first.bank_category == "מזון ומשקאות"
    assert first.source_sheet == max_parser.SHEET_REGULAR


def test_summary_rows_are_not_transactions(max_workbook, statement_rows):
    """Test the three bottom summary rows are excluded"""
    path = max_workbook([statement_rows.max("א", 10.0)])

    result = MaxParser("x.xlsx").parse(path)

    assert [t.business_name for t in result.transactions] == ["א"]


def test_installment_marker(max_workbook, statement_rows):
    """Test "payment K of N" notes become installment fields"""
    path = max_workbook(
        [
            statement_rows.max(
                "איקאה",
                129.0,
                transaction_type="תשלומים",
                notes="תשלום 2 מתוך 24",
                original=3099.0,
            )
        ]
    )

    txn = MaxParser("x.xlsx").parse(path).transactions[0]

    assert txn.payment_type == PaymentType.INSTALLMENTS
    assert txn.installment_index == 2
    assert txn.installment_total == 24
    assert txn.original_amount == 3099.0
    assert txn.charged_amount_ils == 129.0


def test_installment_type_without_marker_warns(max_workbook, statement_rows):
    """Test an installment row missing its marker is kept as one-time with a warning"""
    path = max_workbook([statement_rows.max("איקאה", 129.0, transaction_type="תשלומים")])

    result = MaxParser("x.xlsx").parse(path)

    assert result.transactions[0].payment_type == PaymentType.ONE_TIME
    assert any("without payment marker" in w.message for w in result.warnings)


def test_subscription_wins_over_installment(max_workbook, statement_rows):
    """Test standing orders are subscriptions even with an installment marker"""
    path = max_workbook([statement_rows.max("חברת חשמל", 300.0, notes="הוראת קבע תשלום 1 מתוך 12")])

    txn = MaxParser("x.xlsx").parse(path).transactions[0]

    assert txn.payment_type == PaymentType.SUBSCRIPTION
    assert txn.is_subscription is True
    assert txn.installment_index is None


def test_refund_row(max_workbook, statement_rows):
    """Test negative charges are refunds stored as absolute amounts"""
    path = max_workbook([statement_rows.max("זארה", -99.9)])

    txn = MaxParser("x.xlsx").parse(path).transactions[0]

    assert txn.is_refund is True
    assert txn.charged_amount_ils == 99.9


def test_foreign_row_keeps_exchange_rate(max_workbook, statement_rows):
    """Test exchange-rate column and original currency on foreign sheet"""
    path = max_workbook(
        [
            statement_rows.max(
                "AMAZON",
                370.0,
                original=100.0,
                original_currency="USD",
                exchange_rate=3.7,
            )
        ],
        sheet_name=max_parser.SHEET_FOREIGN,
    )

    txn = MaxParser("x.xlsx").parse(path).transactions[0]

    assert txn.original_currency == "USD"
    assert txn.original_amount == 100.0
    assert txn.exchange_rate_used == 3.7


def test_missing_currency_japanese_business(max_workbook, statement_rows):
    """Test yen is assumed for a currency-less Japanese merchant"""
    path = max_workbook([statement_rows.max("LAWSON TOKYO", 50.0, charged_currency="")])

    result = MaxParser("x.xlsx").parse(path)

    assert result.transactions[0].original_currency == "JPY"
    assert any("JPY" in w.message for w in result.warnings)


def test_pending_sheet_rows_warn(max_workbook, statement_rows):
    """Test rows from the pending sheet carry a warning"""
    path = max_workbook(
        [statement_rows.max("א", 10.0)],
        extra_sheets={max_parser.SHEET_PENDING: [statement_rows.max("ב", 20.0)]},
    )

    result = MaxParser("x.xlsx").parse(path)

    assert len(result.transactions) == 2
    assert any("Pending" in w.message for w in result.warnings)


def test_invalid_date_is_row_error(max_workbook, statement_rows):
    """Test a bad row is reported and the rest still parse"""
    path = max_workbook([statement_rows.max("א", 10.0, deal_date="2025/07/05"), statement_rows.max("ב", 20.0)])

    result = MaxParser("x.xlsx").parse(path)

    assert [t.business_name for t in result.transactions] == ["ב"]
    assert len(result.errors) == 1


def test_invalid_period_raises(max_workbook, statement_rows):
    path = max_workbook([statement_rows.max("א", 10.0)], period="אוגוסט")

    with pytest.raises(MetadataExtractionError):
        MaxParser("x.xlsx").parse(path)


def test_extract_card_from_header(max_workbook, statement_rows):
    path = max_workbook([statement_rows.max("א", 10.0, card="4321")])

    rows = next(iter(read_workbook(path, max_rows=10).values()))
    assert max_parser.extract_card_from_header(rows) == "4321"
