"""VISA/CAL (Discount Bank) statement parser

Format: .xlsx, single sheet whose name contains "דיסקונט". Card number,
account number, charge date and charge total live in free-text banner
cells at the top of the sheet; transactions follow a header row at
index 3 (or 4 when an immediate-charge notice is present).
"""

import logging
import re
from datetime import date
from typing import List, Optional, Tuple

from statement_ledger.config import settings
from statement_ledger.domain.exceptions import MetadataExtractionError, RowParseError, UnsupportedFileError
from statement_ledger.domain.models import ParsedTransaction, ParseIssue, ParserMetadata, ParserResult
from statement_ledger.domain.validation import validate_transaction_total
from statement_ledger.parsers.base import (
    Row,
    Sheet,
    cell_text,
    is_empty_row,
    matches_keyword,
    normalize_currency,
    parse_installment_marker,
    read_workbook,
    resolve_payment_type,
    row_text,
)
from statement_ledger.utils.date_utils import coerce_cell_date, parse_slash_date

logger = logging.getLogger(__name__)

SHEET_MARKER = "דיסקונט"
CARD_BANNER_MARKERS = ("ויזה", "המסתיים")

CARD_PATTERN = re.compile(r"המסתיים ב-(\d{4})")
ACCOUNT_PATTERN = re.compile(r"דיסקונט לישראל ([\d-]+)")
CHARGE_DATE_PATTERN = re.compile(r"לחיוב ב-(\d{1,2}/\d{1,2}/\d{2,4})")
CHARGE_TOTAL_PATTERN = re.compile(r":\s*([\d,]+\.\d{2})\s*₪")
IMMEDIATE_TOTAL_PATTERN = re.compile(r"עסקאות בחיוב מיידי\s*([\d,]+\.\d{2})\s*₪")
FOOTER_PATTERN = re.compile(r"את המידע המלא על כל עסקה")
FILENAME_MONTH_PATTERN = re.compile(r"(\d{2})\.(\d{2})\.(\d{2})")
SYMBOL_FIRST_AMOUNT = re.compile(r"^([$₪€¥£]|[A-Z]{3})\s*(-?\d+(?:\.\d+)?)$")
SYMBOL_LAST_AMOUNT = re.compile(r"^(-?\d+(?:\.\d+)?)\s*([$₪€¥£]|[A-Z]{3})$")

HEADER_INDICATORS = ["תאריך", "בית עסק", "סכום"]

COL_DATE = 0
COL_BUSINESS = 1
COL_TRANSACTION_AMOUNT = 2
COL_CHARGED_AMOUNT = 3
COL_TYPE = 4
COL_CATEGORY = 5
COL_NOTES = 6

TYPE_REGULAR = "רגילה"
TYPE_INSTALLMENTS = "תשלומים"
TYPE_REFUND = "זיכוי"

SUBSCRIPTION_KEYWORDS = [
    "הוראת קבע",
    "מנוי",
    "חודשי",
    "subscription",
    "netflix",
    "spotify",
    "apple",
    "google",
    "microsoft",
    "amazon prime",
    "youtube premium",
]


def extract_card_from_header(rows: Sheet) -> Optional[str]:
    """Card last 4 from the "ending in" banner in the first rows"""
    for row_index in range(min(3, len(rows))):
        match = CARD_PATTERN.search(row_text(rows, row_index))
        if match:
            return match.group(1)
    return None


def _is_header_row(row: Optional[Row]) -> bool:
    if not row:
        return False
    texts = [cell_text(value) for value in row]
    return all(any(indicator in text for text in texts) for indicator in HEADER_INDICATORS)


def _to_float(text: str) -> float:
    return float(text.replace(",", ""))


def parse_amount(value: object) -> Tuple[float, str]:
    """Parse "₪ 1,234.50", "$ 12.00", "12.00 USD" or a bare number (assumed local)"""
    if value is None or cell_text(value) == "":
        return 0.0, settings.local_currency
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value), settings.local_currency

    cleaned = cell_text(value).replace(",", "")
    match = SYMBOL_FIRST_AMOUNT.match(cleaned)
    if match:
        return float(match.group(2)), normalize_currency(match.group(1))
    match = SYMBOL_LAST_AMOUNT.match(cleaned)
    if match:
        return float(match.group(1)), normalize_currency(match.group(2))
    try:
        return float(cleaned), settings.local_currency
    except ValueError:
        raise RowParseError(f"Cannot parse amount: {value}")


class VisaCalParser:
    """Parser for VISA/CAL single-sheet exports"""

    def __init__(self, file_name: str):
        self.file_name = file_name

    def get_name(self) -> str:
        return "visa-cal"

    def can_parse(self, file_path: str) -> bool:
        try:
            sheets = read_workbook(file_path, max_rows=6)
            if not sheets:
                return False
            sheet_name = next(iter(sheets))
            if SHEET_MARKER not in sheet_name:
                return False
            rows = sheets[sheet_name]
            banner = row_text(rows, 0)
            if not all(marker in banner for marker in CARD_BANNER_MARKERS):
                return False
            return _is_header_row(rows[3] if len(rows) > 3 else None) or _is_header_row(
                rows[4] if len(rows) > 4 else None
            )
        except Exception:
            return False

    def parse(self, file_path: str) -> ParserResult:
        sheets = read_workbook(file_path)
        if not sheets:
            raise UnsupportedFileError(f"No sheets found in VISA/CAL file {self.file_name}")
        rows = next(iter(sheets.values()))

        metadata = self._extract_metadata(rows)
        header_row = self._find_header_row(rows)

        transactions: List[ParsedTransaction] = []
        errors: List[ParseIssue] = []
        empty_rows = 0

        for row_index in range(header_row + 1, len(rows)):
            row = rows[row_index]
            if FOOTER_PATTERN.search(row_text(rows, row_index)):
                break
            if is_empty_row(row):
                empty_rows += 1
                if empty_rows >= 2:
                    break
                continue
            empty_rows = 0

            try:
                transactions.append(self._parse_row(row, metadata.statement_date))
            except (RowParseError, ValueError) as e:
                errors.append(ParseIssue(row=row_index, message=str(e), data=row))

        return ParserResult(
            metadata=metadata,
            transactions=transactions,
            errors=errors,
            warnings=[],
            validation=validate_transaction_total(transactions, metadata.total_amount, settings.validation_tolerance),
        )

    def _extract_metadata(self, rows: Sheet) -> ParserMetadata:
        banner = row_text(rows, 0)
        charge_line = row_text(rows, 2)
        immediate_line = row_text(rows, 3)

        card_match = CARD_PATTERN.search(banner)
        if not card_match:
            raise MetadataExtractionError("Cannot extract card last 4 digits from row 1")

        account_match = ACCOUNT_PATTERN.search(banner)
        if not account_match:
            raise MetadataExtractionError("Cannot extract account number from row 1")

        charge_date_match = CHARGE_DATE_PATTERN.search(charge_line)
        if not charge_date_match:
            raise MetadataExtractionError("Cannot extract charge date from row 3")

        charge_total_match = CHARGE_TOTAL_PATTERN.search(charge_line)
        if not charge_total_match:
            raise MetadataExtractionError("Cannot extract charge total from row 3")

        charge_date = parse_slash_date(charge_date_match.group(1))
        immediate_match = IMMEDIATE_TOTAL_PATTERN.search(immediate_line)
        if immediate_match:
            logger.debug(
                "Immediate charge total present",
                extra={"file_name": self.file_name, "immediate_total": _to_float(immediate_match.group(1))},
            )

        return ParserMetadata(
            card_last4=card_match.group(1),
            account_number=account_match.group(1),
            statement_month=self._statement_month(charge_date),
            statement_date=charge_date,
            total_amount=_to_float(charge_total_match.group(1)),
        )

    def _statement_month(self, charge_date: date) -> str:
        match = FILENAME_MONTH_PATTERN.search(self.file_name)
        if match:
            _, month, year = match.groups()
            return f"{month}/20{year}"
        return f"{charge_date.month:02d}/{charge_date.year}"

    def _find_header_row(self, rows: Sheet) -> int:
        for row_index in (3, 4):
            if row_index < len(rows) and _is_header_row(rows[row_index]):
                return row_index
        raise MetadataExtractionError("Cannot find header row (expected row 4 or 5)")

    def _parse_row(self, row: Row, charge_date: Optional[date]) -> ParsedTransaction:
        def value(index: int) -> object:
            return row[index] if index < len(row) else None

        try:
            deal_date = coerce_cell_date(value(COL_DATE))
        except ValueError as e:
            raise RowParseError(str(e)) from e

        business_name = cell_text(value(COL_BUSINESS))
        if not business_name:
            raise RowParseError("Missing business name")

        transaction_type = cell_text(value(COL_TYPE)) or TYPE_REGULAR
        bank_category = cell_text(value(COL_CATEGORY)) or None
        notes = cell_text(value(COL_NOTES)) or None

        original_amount, original_currency = parse_amount(value(COL_TRANSACTION_AMOUNT))
        charged_amount, _ = parse_amount(value(COL_CHARGED_AMOUNT))

        is_subscription = matches_keyword(SUBSCRIPTION_KEYWORDS, notes, business_name)
        marker = parse_installment_marker(notes)
        payment_type = resolve_payment_type(is_subscription, marker is not None)

        exchange_rate = None
        if original_currency != settings.local_currency and original_amount:
            exchange_rate = round(charged_amount / original_amount, 6)

        return ParsedTransaction(
            business_name=business_name,
            deal_date=deal_date,
            bank_charge_date=charge_date,
            original_amount=abs(original_amount),
            original_currency=original_currency,
            charged_amount_ils=abs(charged_amount),
            exchange_rate_used=abs(exchange_rate) if exchange_rate else None,
            payment_type=payment_type,
            installment_index=marker[0] if marker and not is_subscription else None,
            installment_total=marker[1] if marker and not is_subscription else None,
            is_refund=transaction_type == TYPE_REFUND or original_amount < 0,
            is_subscription=is_subscription,
            source_file_name=self.file_name,
            bank_category=bank_category,
            notes=notes,
            raw_row=row,
        )
