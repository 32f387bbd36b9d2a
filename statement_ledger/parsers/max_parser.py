"""MAX (Discount Bank) statement parser

Format: .xlsx with Hebrew text spread over up to five sheets, one per
settlement state. Each sheet carries the billing period (MM/YYYY) in A3,
a fixed header in row 4 and three summary rows at the bottom.
"""

import logging
import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from statement_ledger.config import settings
from statement_ledger.domain.exceptions import MetadataExtractionError, RowParseError, UnsupportedFileError
from statement_ledger.domain.models import ParsedTransaction, ParseIssue, ParserMetadata, ParserResult
from statement_ledger.domain.validation import validate_transaction_total
from statement_ledger.parsers.base import (
    STANDING_ORDER_PATTERN,
    Row,
    Sheet,
    cell_text,
    clean_business_name,
    is_empty_row,
    matches_keyword,
    normalize_currency,
    parse_installment_marker,
    parse_number,
    read_workbook,
    resolve_payment_type,
)
from statement_ledger.utils.date_utils import parse_dash_date

logger = logging.getLogger(__name__)

SHEET_REGULAR = "עסקאות במועד החיוב"
SHEET_FOREIGN = 'עסקאות חו"ל ומט"ח'
SHEET_IMMEDIATE = "עסקאות בחיוב מיידי"
SHEET_PENDING = "עסקאות שאושרו וטרם נקלטו"
SHEET_INFO = "עסקאות לידיעה"

SHEET_PRIORITY = [SHEET_REGULAR, SHEET_FOREIGN, SHEET_IMMEDIATE, SHEET_PENDING, SHEET_INFO]

PERIOD_ROW = 2
HEADER_ROW = 3
SUMMARY_ROWS = 3

COL_DEAL_DATE = "תאריך עסקה"
COL_BUSINESS = "שם בית העסק"
COL_CATEGORY = "קטגוריה"
COL_CARD = "4 ספרות אחרונות של כרטיס האשראי"
COL_TYPE = "סוג עסקה"
COL_CHARGED_AMOUNT = "סכום חיוב"
COL_CHARGED_CURRENCY = "מטבע חיוב"
COL_ORIGINAL_AMOUNT = "סכום עסקה מקורי"
COL_ORIGINAL_CURRENCY = "מטבע עסקה מקורי"
COL_CHARGE_DATE = "תאריך חיוב"
COL_NOTES = "הערות"
COL_TAGS = "תיוגים"
COL_DISCOUNT_CLUB = "מועדון הנחות"
COL_DISCOUNT_KEY = "מפתח דיסקונט"
COL_EXECUTION = "אופן ביצוע ההעסקה"
COL_EXCHANGE_RATE = 'שער המרה ממטבע מקור/התחשבנות לש"ח'

EXPECTED_HEADER = [
    COL_DEAL_DATE,
    COL_BUSINESS,
    COL_CATEGORY,
    COL_CARD,
    COL_TYPE,
    COL_CHARGED_AMOUNT,
    COL_CHARGED_CURRENCY,
    COL_ORIGINAL_AMOUNT,
    COL_ORIGINAL_CURRENCY,
    COL_CHARGE_DATE,
    COL_NOTES,
    COL_TAGS,
    COL_DISCOUNT_CLUB,
    COL_DISCOUNT_KEY,
    COL_EXECUTION,
    COL_EXCHANGE_RATE,
]
REQUIRED_COLUMNS = [COL_DEAL_DATE, COL_BUSINESS, COL_CHARGED_AMOUNT, COL_CHARGED_CURRENCY]

PERIOD_PATTERN = re.compile(r"^(\d{2})/(\d{4})$")
CANCELLATION_PATTERN = re.compile(r"ביטול עסקה")
TOTAL_LABEL = "סך הכל"
TYPE_INSTALLMENTS = "תשלומים"

SUBSCRIPTION_KEYWORDS = [
    "netflix",
    "spotify",
    "apple",
    "google",
    "microsoft",
    "adobe",
    "amazon prime",
    "youtube",
]

# Rows with no currency at all are assumed local unless the merchant looks Japanese
JAPAN_INDICATORS = ["JP", "TOKYO", "OSAKA", "JAPAN", "日本"]


def extract_card_from_header(rows: Sheet) -> Optional[str]:
    """Card last 4 from the first data row's card column (header area of the first sheet)"""
    if len(rows) <= HEADER_ROW + 1:
        return None
    header = [cell_text(value) for value in rows[HEADER_ROW]]
    if COL_CARD not in header:
        return None
    first_row = rows[HEADER_ROW + 1]
    column = header.index(COL_CARD)
    last4 = cell_text(first_row[column]) if column < len(first_row) else ""
    return last4 if re.fullmatch(r"\d{4}", last4) else None


def _has_columns(header: Optional[Row], columns: List[str]) -> bool:
    if not header:
        return False
    texts = {cell_text(value) for value in header}
    return all(column in texts for column in columns)


def _is_period(value: object) -> bool:
    return bool(PERIOD_PATTERN.match(cell_text(value)))


class MaxParser:
    """Parser for MAX multi-sheet exports"""

    def __init__(self, file_name: str):
        self.file_name = file_name

    def get_name(self) -> str:
        return "max"

    def can_parse(self, file_path: str) -> bool:
        try:
            sheets = read_workbook(file_path, max_rows=HEADER_ROW + 1)
            rows = sheets.get(self._metadata_sheet_name(list(sheets)), [])
            if len(rows) <= HEADER_ROW:
                return False
            return _is_period(rows[PERIOD_ROW][0] if rows[PERIOD_ROW] else None) and _has_columns(
                rows[HEADER_ROW], REQUIRED_COLUMNS
            )
        except Exception:
            return False

    def parse(self, file_path: str) -> ParserResult:
        sheets = read_workbook(file_path)
        if not sheets:
            raise UnsupportedFileError(f"No sheets found in MAX file {self.file_name}")

        metadata = self._extract_metadata(sheets[self._metadata_sheet_name(list(sheets))])

        transactions: List[ParsedTransaction] = []
        errors: List[ParseIssue] = []
        warnings: List[ParseIssue] = []

        for sheet_name in SHEET_PRIORITY:
            if sheet_name not in sheets:
                continue
            sheet_transactions, card_last4 = self._parse_sheet(sheets[sheet_name], sheet_name, errors, warnings)
            if not metadata.card_last4 and card_last4:
                metadata.card_last4 = card_last4
            transactions.extend(sheet_transactions)
            logger.debug(
                "Parsed MAX sheet",
                extra={"file_name": self.file_name, "sheet": sheet_name, "transactions": len(sheet_transactions)},
            )

        if not metadata.card_last4:
            raise MetadataExtractionError(f"Cannot determine card last 4 digits in {self.file_name}")

        return ParserResult(
            metadata=metadata,
            transactions=transactions,
            errors=errors,
            warnings=warnings,
            validation=validate_transaction_total(transactions, metadata.total_amount, settings.validation_tolerance),
        )

    def _metadata_sheet_name(self, sheet_names: List[str]) -> str:
        for sheet_name in SHEET_PRIORITY:
            if sheet_name in sheet_names:
                return sheet_name
        if not sheet_names:
            raise UnsupportedFileError("Workbook has no sheets")
        return sheet_names[0]

    def _extract_metadata(self, rows: Sheet) -> ParserMetadata:
        period = cell_text(rows[PERIOD_ROW][0]) if len(rows) > PERIOD_ROW and rows[PERIOD_ROW] else ""
        if not period:
            raise MetadataExtractionError("Cannot extract statement period from row 3")
        if not PERIOD_PATTERN.match(period):
            raise MetadataExtractionError(f"Invalid period format: {period}")

        return ParserMetadata(card_last4=extract_card_from_header(rows) or "", statement_month=period)

    def _parse_sheet(
        self,
        rows: Sheet,
        sheet_name: str,
        errors: List[ParseIssue],
        warnings: List[ParseIssue],
    ) -> Tuple[List[ParsedTransaction], Optional[str]]:
        if len(rows) <= HEADER_ROW or not _has_columns(rows[HEADER_ROW], EXPECTED_HEADER):
            errors.append(ParseIssue(row=HEADER_ROW, message=f"Invalid header in sheet: {sheet_name}"))
            return [], None

        header = [cell_text(value) for value in rows[HEADER_ROW]]
        data_end = max(HEADER_ROW + 1, len(rows) - SUMMARY_ROWS)
        transactions: List[ParsedTransaction] = []
        card_last4: Optional[str] = None

        for row_index in range(HEADER_ROW + 1, data_end):
            row = rows[row_index]
            if is_empty_row(row) or cell_text(row[0]) == TOTAL_LABEL:
                continue

            try:
                raw = self._raw_fields(row, header)
                transaction = self._to_transaction(raw, sheet_name, row_index, row, warnings)
            except (RowParseError, ValueError) as e:
                errors.append(ParseIssue(row=row_index, message=str(e), data=row))
                continue

            if card_last4 is None and re.fullmatch(r"\d{4}", raw[COL_CARD]):
                card_last4 = raw[COL_CARD]
            transactions.append(transaction)

        return transactions, card_last4

    def _raw_fields(self, row: Row, header: List[str]) -> Dict[str, object]:
        raw: Dict[str, object] = {}
        for column in EXPECTED_HEADER:
            index = header.index(column)
            value = row[index] if index < len(row) else None
            if column in (COL_CHARGED_AMOUNT, COL_ORIGINAL_AMOUNT, COL_DEAL_DATE, COL_CHARGE_DATE):
                raw[column] = value
            else:
                raw[column] = cell_text(value)
        return raw

    def _to_transaction(
        self,
        raw: Dict[str, object],
        sheet_name: str,
        row_index: int,
        row: Row,
        warnings: List[ParseIssue],
    ) -> ParsedTransaction:
        business_name = raw[COL_BUSINESS]
        notes = raw[COL_NOTES]
        if not business_name:
            raise RowParseError("Missing business name")

        deal_date = self._parse_date(raw[COL_DEAL_DATE])
        bank_charge_date = self._parse_date(raw[COL_CHARGE_DATE]) if cell_text(raw[COL_CHARGE_DATE]) else None

        original_amount = parse_number(raw[COL_ORIGINAL_AMOUNT])
        charged_amount = parse_number(raw[COL_CHARGED_AMOUNT])
        if charged_amount is None and original_amount is None:
            raise RowParseError(f"Cannot parse amount: {raw[COL_CHARGED_AMOUNT]!r}")
        if charged_amount is None:
            charged_amount = original_amount
        if original_amount is None:
            original_amount = charged_amount

        if sheet_name == SHEET_PENDING:
            warnings.append(
                ParseIssue(
                    row=row_index,
                    message="Pending transaction - charged amount not finalized",
                    data={"business_name": business_name, "sheet": sheet_name},
                )
            )

        original_currency = raw[COL_ORIGINAL_CURRENCY] or raw[COL_CHARGED_CURRENCY]
        if not original_currency:
            upper_name = business_name.upper()
            if any(indicator in upper_name for indicator in JAPAN_INDICATORS):
                original_currency = "JPY"
                warnings.append(
                    ParseIssue(
                        row=row_index,
                        message="Missing currency - assumed JPY from business name",
                        data={"business_name": business_name},
                    )
                )
            else:
                original_currency = settings.local_currency

        is_subscription = bool(STANDING_ORDER_PATTERN.search(notes)) or matches_keyword(
            SUBSCRIPTION_KEYWORDS, business_name, notes
        )
        marker = parse_installment_marker(notes)
        if marker is None and raw[COL_TYPE] == TYPE_INSTALLMENTS and not is_subscription:
            warnings.append(
                ParseIssue(
                    row=row_index,
                    message="Installment transaction without payment marker - recorded as one-time",
                    data={"business_name": business_name},
                )
            )
        payment_type = resolve_payment_type(is_subscription, marker is not None)

        return ParsedTransaction(
            business_name=clean_business_name(business_name),
            deal_date=deal_date,
            bank_charge_date=bank_charge_date,
            original_amount=abs(original_amount),
            original_currency=normalize_currency(original_currency, settings.local_currency),
            charged_amount_ils=abs(charged_amount),
            exchange_rate_used=parse_number(raw[COL_EXCHANGE_RATE]) or None,
            payment_type=payment_type,
            installment_index=marker[0] if marker and not is_subscription else None,
            installment_total=marker[1] if marker and not is_subscription else None,
            is_refund=charged_amount < 0 or bool(CANCELLATION_PATTERN.search(notes)),
            is_subscription=is_subscription,
            source_file_name=self.file_name,
            bank_category=raw[COL_CATEGORY] or None,
            notes=self._build_notes(raw),
            source_sheet=sheet_name,
            raw_row=row,
        )

    def _parse_date(self, value: object) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return parse_dash_date(cell_text(value))
        except ValueError as e:
            raise RowParseError(f"Invalid MAX date format: {cell_text(value)}") from e

    def _build_notes(self, raw: Dict[str, object]) -> Optional[str]:
        parts = []
        if raw[COL_NOTES]:
            parts.append(raw[COL_NOTES])
        if raw[COL_TAGS]:
            parts.append(f"תיוגים: {raw[COL_TAGS]}")
        if raw[COL_DISCOUNT_CLUB]:
            parts.append(f"מועדון הנחות: {raw[COL_DISCOUNT_CLUB]}")
        if raw[COL_EXECUTION]:
            parts.append(f"אופן ביצוע: {raw[COL_EXECUTION]}")
        return " | ".join(parts) if parts else None
