"""Parser contract and helpers shared by the issuer parsers"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from openpyxl import load_workbook

from statement_ledger.domain.exceptions import UnsupportedFileError
from statement_ledger.domain.models import ParserResult, PaymentType

logger = logging.getLogger(__name__)

Row = List[object]
Sheet = List[Row]

INSTALLMENT_PATTERN = re.compile(r"תשלום\s+(\d+)\s+מתוך\s+(\d+)")
STANDING_ORDER_PATTERN = re.compile(r"הוראת קבע")

CURRENCY_SYMBOLS = {
    "₪": "ILS",
    "$": "USD",
    "€": "EUR",
    "¥": "JPY",
    "£": "GBP",
    'ש"ח': "ILS",
}


class StatementParser(Protocol):
    """Capability set every issuer parser implements"""

    file_name: str

    def can_parse(self, file_path: str) -> bool:
        """Cheap structural sniff; False for foreign or unreadable files, never raises"""
        ...

    def parse(self, file_path: str) -> ParserResult:
        """Full extraction; raises MetadataExtractionError when the banner is unusable"""
        ...

    def get_name(self) -> str:
        ...


def read_workbook(file_path: str, max_rows: Optional[int] = None) -> Dict[str, Sheet]:
    """
    Load every sheet as a list of row value lists, preserving sheet order.

    Raises:
        UnsupportedFileError: file missing or not a readable workbook
    """
    path = Path(file_path)
    if not path.exists():
        raise UnsupportedFileError(f"File not found: {file_path}")

    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as e:
        raise UnsupportedFileError(f"Cannot open workbook {path.name}: {e}") from e

    try:
        sheets: Dict[str, Sheet] = {}
        for worksheet in workbook.worksheets:
            rows: Sheet = []
            for row in worksheet.iter_rows(values_only=True, max_row=max_rows):
                rows.append(list(row))
            sheets[worksheet.title] = rows
        return sheets
    finally:
        workbook.close()


def cell(rows: Sheet, row_index: int, col_index: int = 0) -> object:
    if row_index < 0 or row_index >= len(rows):
        return None
    row = rows[row_index]
    if col_index >= len(row):
        return None
    return row[col_index]


def cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def row_text(rows: Sheet, row_index: int, col_index: int = 0) -> str:
    return cell_text(cell(rows, row_index, col_index))


def is_empty_row(row: Optional[Row]) -> bool:
    return not row or all(cell_text(value) == "" for value in row)


def parse_installment_marker(text: Optional[str]) -> Optional[Tuple[int, int]]:
    """Extract (index, total) from a "payment K of N" note"""
    if not text:
        return None
    match = INSTALLMENT_PATTERN.search(text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def resolve_payment_type(is_subscription: bool, is_installment: bool) -> PaymentType:
    # Subscription wins over an installment marker on the same row
    if is_subscription:
        return PaymentType.SUBSCRIPTION
    if is_installment:
        return PaymentType.INSTALLMENTS
    return PaymentType.ONE_TIME


def matches_keyword(keywords: List[str], *texts: Optional[str]) -> bool:
    haystack = " ".join(text for text in texts if text).lower()
    return any(keyword.lower() in haystack for keyword in keywords)


def normalize_currency(symbol: Optional[str], default: str = "ILS") -> str:
    value = (symbol or "").strip()
    if not value:
        return default
    return CURRENCY_SYMBOLS.get(value, value.upper())


def parse_number(value: object) -> Optional[float]:
    """Parse a numeric cell, stripping currency symbols and thousands separators"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[₪$€¥£\s,]", "", str(value))
    if cleaned == "":
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def clean_business_name(name: str) -> str:
    return re.sub(r"\s{2,}", " ", name).strip()
