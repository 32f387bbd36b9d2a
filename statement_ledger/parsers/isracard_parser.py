"""Isracard / AMEX statement parser

Format: .xlsx, single sheet "פירוט עסקאות" holding up to four sections:
regular billing, out-of-cycle (foreign/online) billing, future billing and
immediate charges. Each section title is followed by a column header row
and closed by a total row or the legal footer.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from statement_ledger.config import settings
from statement_ledger.domain.exceptions import MetadataExtractionError, RowParseError, UnsupportedFileError
from statement_ledger.domain.models import ParsedTransaction, ParseIssue, ParserMetadata, ParserResult
from statement_ledger.domain.validation import validate_transaction_total
from statement_ledger.parsers.base import (
    STANDING_ORDER_PATTERN,
    Row,
    Sheet,
    cell,
    cell_text,
    clean_business_name,
    normalize_currency,
    parse_installment_marker,
    parse_number,
    read_workbook,
    resolve_payment_type,
    row_text,
)
from statement_ledger.utils.date_utils import parse_dotted_date

logger = logging.getLogger(__name__)

SHEET_NAME = "פירוט עסקאות"
TITLE_ROW = 1
CARD_ROW = 4

CARD_PATTERN = re.compile(r"-\s*(\d{4})")
CHARGE_DATE_PATTERN = re.compile(r"ב-(\d{1,2})\.(\d{1,2})")
YEAR_PATTERN = re.compile(r"(\d{4})")
DATE_PATTERN = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{2,4})")
DISCOUNT_PATTERN = re.compile(r"הנחה")
REFUND_PATTERN = re.compile(r"זיכוי|החזר|ביטול")

# Issuer names printed next to the card number; a bare "- 1234" also matches dates
ISSUER_MARKERS = ("ישראכרט", "אמריקן אקספרס", "אמקס")

SECTION_REGULAR = "עסקאות למועד חיוב"
SECTION_FOREIGN = "עסקאות בחיוב מחוץ למועד"
SECTION_FUTURE = "עסקאות בחיוב עתידי"
SECTION_IMMEDIATE = "עסקאות בחיוב מיידי"
SECTION_MARKER = "עסקאות ל"

# Sections whose rows carry their own bank charge date in column I
DATED_SECTIONS = {SECTION_FOREIGN, SECTION_IMMEDIATE}

TOTAL_MARKER = 'סה"כ'
FOOTER_MARKER = "תנאים משפטיים"
CARDHOLDER_MARKER = "על שם"

COL_DEAL_DATE = 0
COL_BUSINESS = 1
COL_ORIGINAL_AMOUNT = 2
COL_ORIGINAL_CURRENCY = 3
COL_CHARGED_AMOUNT = 4
COL_CHARGED_CURRENCY = 5
COL_VOUCHER = 6
COL_DETAILS = 7
COL_BANK_CHARGE_DATE = 8

HEBREW_MONTHS = {
    "ינואר": 1,
    "פברואר": 2,
    "מרץ": 3,
    "מרס": 3,
    "אפריל": 4,
    "מאי": 5,
    "יוני": 6,
    "יולי": 7,
    "אוגוסט": 8,
    "ספטמבר": 9,
    "אוקטובר": 10,
    "נובמבר": 11,
    "דצמבר": 12,
}


@dataclass
class Section:
    title: str
    start: int
    end: int


def extract_card_from_header(rows: Sheet) -> Optional[str]:
    """Card last 4 from the "<issuer> - 1234" line in row 5"""
    text = row_text(rows, CARD_ROW)
    if not any(marker in text for marker in ISSUER_MARKERS):
        return None
    match = CARD_PATTERN.search(text)
    return match.group(1) if match else None


def normalize_statement_month(text: str) -> str:
    """"יולי 2025" -> "07/2025"; anything unrecognised is returned as printed"""
    year_match = YEAR_PATTERN.search(text)
    for name, month in HEBREW_MONTHS.items():
        if name in text and year_match:
            return f"{month:02d}/{year_match.group(1)}"
    return text


class IsracardParser:
    """Parser for Isracard and American Express exports"""

    def __init__(self, file_name: str):
        self.file_name = file_name

    def get_name(self) -> str:
        return "isracard-amex"

    def can_parse(self, file_path: str) -> bool:
        try:
            sheets = read_workbook(file_path, max_rows=13)
            if SHEET_NAME not in sheets:
                return False
            rows = sheets[SHEET_NAME]
            if SHEET_NAME not in row_text(rows, TITLE_ROW):
                return False
            if not CARD_PATTERN.search(row_text(rows, CARD_ROW)):
                return False
            return any(SECTION_MARKER in row_text(rows, row_index) for row_index in range(7, 13))
        except Exception:
            return False

    def parse(self, file_path: str) -> ParserResult:
        sheets = read_workbook(file_path)
        if SHEET_NAME not in sheets:
            raise UnsupportedFileError(f"Sheet '{SHEET_NAME}' not found in {self.file_name}")
        rows = sheets[SHEET_NAME]

        metadata = self._extract_metadata(rows)
        sections = self._detect_sections(rows)
        logger.debug(
            "Detected Isracard sections",
            extra={"file_name": self.file_name, "sections": [(s.title, s.start, s.end) for s in sections]},
        )

        transactions: List[ParsedTransaction] = []
        errors: List[ParseIssue] = []
        warnings: List[ParseIssue] = []

        for section in sections:
            for row_index in range(section.start, section.end):
                row = rows[row_index]
                try:
                    transaction = self._parse_row(row, section.title, metadata.statement_date)
                except (RowParseError, ValueError) as e:
                    errors.append(ParseIssue(row=row_index, message=str(e), data=row))
                    continue
                if transaction is None:
                    continue
                if transaction.charged_amount_ils == 0 and DISCOUNT_PATTERN.search(transaction.notes or ""):
                    warnings.append(
                        ParseIssue(
                            row=row_index,
                            message="Charge waived by discount",
                            data={"business_name": transaction.business_name},
                        )
                    )
                transactions.append(transaction)

        return ParserResult(
            metadata=metadata,
            transactions=transactions,
            errors=errors,
            warnings=warnings,
            validation=validate_transaction_total(transactions, metadata.total_amount, settings.validation_tolerance),
        )

    def _extract_metadata(self, rows: Sheet) -> ParserMetadata:
        period_text = cell_text(cell(rows, TITLE_ROW, 2))
        year_match = YEAR_PATTERN.search(period_text)
        statement_year = int(year_match.group(1)) if year_match else date.today().year

        card_last4: Optional[str] = None
        total_amount: Optional[float] = None
        for row_index in range(3, min(10, len(rows))):
            row = rows[row_index]
            for col_index in range(min(10, len(row))):
                match = CARD_PATTERN.search(cell_text(row[col_index]))
                if match:
                    card_last4 = match.group(1)
                    total_amount = parse_number(cell(rows, row_index, 7)) or parse_number(cell(rows, row_index, 8))
                    break
            if card_last4:
                break

        if not card_last4:
            raise MetadataExtractionError("Cannot extract card number from file")

        charge_date: Optional[date] = None
        for row_index in range(3, min(10, len(rows))):
            if not any(CARDHOLDER_MARKER in cell_text(cell(rows, row_index, col)) for col in range(5)):
                continue
            text = cell_text(cell(rows, row_index, 7)) + cell_text(cell(rows, row_index, 8))
            match = CHARGE_DATE_PATTERN.search(text)
            if match:
                charge_date = date(statement_year, int(match.group(2)), int(match.group(1)))
            break

        return ParserMetadata(
            card_last4=card_last4,
            statement_month=normalize_statement_month(period_text),
            statement_date=charge_date,
            total_amount=total_amount,
        )

    def _detect_sections(self, rows: Sheet) -> List[Section]:
        sections: List[Section] = []
        current: Optional[Section] = None

        def close(end: int) -> None:
            nonlocal current
            if current is not None:
                current.end = max(current.start, end)
                sections.append(current)
                current = None

        for row_index in range(len(rows)):
            text_a = row_text(rows, row_index, 0)
            text_b = row_text(rows, row_index, 1)

            title = next(
                (
                    header
                    for header in (SECTION_REGULAR, SECTION_FOREIGN, SECTION_FUTURE, SECTION_IMMEDIATE)
                    if header in text_a
                ),
                None,
            )
            if title:
                close(row_index)
                current = Section(title=title, start=row_index + 2, end=len(rows))
            elif TOTAL_MARKER in text_b or FOOTER_MARKER in text_a:
                close(row_index)

        close(len(rows))
        return sections

    def _parse_row(
        self,
        row: Row,
        section_title: str,
        statement_date: Optional[date],
    ) -> Optional[ParsedTransaction]:
        def value(index: int) -> object:
            return row[index] if index < len(row) else None

        deal_date = self._parse_date(value(COL_DEAL_DATE))
        if deal_date is None:
            return None

        business_name = cell_text(value(COL_BUSINESS))
        if not business_name or TOTAL_MARKER in business_name:
            return None

        original_amount = parse_number(value(COL_ORIGINAL_AMOUNT)) or 0.0
        charged_amount = parse_number(value(COL_CHARGED_AMOUNT)) or 0.0
        original_currency = normalize_currency(cell_text(value(COL_ORIGINAL_CURRENCY)), settings.local_currency)
        charged_currency = normalize_currency(cell_text(value(COL_CHARGED_CURRENCY)), settings.local_currency)
        details = cell_text(value(COL_DETAILS))

        bank_charge_date = statement_date
        if section_title in DATED_SECTIONS and cell_text(value(COL_BANK_CHARGE_DATE)):
            bank_charge_date = self._parse_date(value(COL_BANK_CHARGE_DATE)) or statement_date

        is_subscription = bool(STANDING_ORDER_PATTERN.search(details))
        marker = None if is_subscription else parse_installment_marker(details)
        is_refund = charged_amount < 0 or bool(REFUND_PATTERN.search(details))

        exchange_rate = None
        if original_currency != charged_currency and original_amount > 0:
            exchange_rate = round(charged_amount / original_amount, 6)

        notes = details or None

        return ParsedTransaction(
            business_name=clean_business_name(business_name),
            deal_date=deal_date,
            bank_charge_date=bank_charge_date,
            original_amount=abs(original_amount),
            original_currency=original_currency,
            charged_amount_ils=abs(charged_amount),
            exchange_rate_used=abs(exchange_rate) if exchange_rate else None,
            payment_type=resolve_payment_type(is_subscription, marker is not None),
            installment_index=marker[0] if marker else None,
            installment_total=marker[1] if marker else None,
            is_refund=is_refund,
            is_subscription=is_subscription,
            source_file_name=self.file_name,
            notes=notes,
            source_sheet=section_title,
            raw_row=row,
        )

    def _parse_date(self, value: object) -> Optional[date]:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        text = cell_text(value)
        if not DATE_PATTERN.search(text):
            return None
        parsed = parse_dotted_date(text)
        if parsed is None:
            raise RowParseError(f"Invalid deal date: {text}")
        return parsed

