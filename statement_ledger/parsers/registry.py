"""Issuer to parser wiring"""

import logging
from typing import Callable, Dict, List, Optional, Tuple, Type

from statement_ledger.domain.models import CardInfo, Issuer
from statement_ledger.parsers import isracard_parser, max_parser, visa_cal_parser
from statement_ledger.parsers.base import Sheet, StatementParser, read_workbook
from statement_ledger.parsers.isracard_parser import IsracardParser
from statement_ledger.parsers.max_parser import MaxParser
from statement_ledger.parsers.visa_cal_parser import VisaCalParser

logger = logging.getLogger(__name__)

ISSUER_TO_FILE_FORMAT: Dict[Issuer, str] = {
    Issuer.MAX: "max",
    Issuer.VISA_CAL: "visa-cal",
    Issuer.ISRACARD: "isracard",
}

FILE_FORMAT_TO_ISSUER: Dict[str, Issuer] = {value: key for key, value in ISSUER_TO_FILE_FORMAT.items()}

DEFAULT_BANK_NAMES: Dict[Issuer, str] = {
    Issuer.MAX: "Discount Bank (MAX)",
    Issuer.VISA_CAL: "Discount Bank (VISA-CAL)",
    Issuer.ISRACARD: "Isracard / AMEX",
}

PARSERS_BY_HANDLER: Dict[str, Type[StatementParser]] = {
    "max": MaxParser,
    "visa-cal": VisaCalParser,
    "visa": VisaCalParser,
    "cal": VisaCalParser,
    "isracard": IsracardParser,
    "amex": IsracardParser,
}

# Order matters: the MAX column-header sniff is the most specific
HEADER_EXTRACTORS: List[Tuple[Issuer, Callable[[Sheet], Optional[str]]]] = [
    (Issuer.MAX, max_parser.extract_card_from_header),
    (Issuer.VISA_CAL, visa_cal_parser.extract_card_from_header),
    (Issuer.ISRACARD, isracard_parser.extract_card_from_header),
]


def select_parser(file_format_handler: Optional[str], file_name: str) -> StatementParser:
    """Pick the parser for a card's file format handler; unknown handlers get VISA/CAL"""
    parser_cls = PARSERS_BY_HANDLER.get((file_format_handler or "").lower(), VisaCalParser)
    return parser_cls(file_name)


def issuer_for_handler(file_format_handler: Optional[str]) -> Optional[Issuer]:
    if not file_format_handler:
        return None
    return FILE_FORMAT_TO_ISSUER.get(file_format_handler.lower())


def extract_from_header(file_path: str, max_rows: int = 10) -> Optional[CardInfo]:
    """
    Try each issuer's header extractor against the first rows of the first sheet.

    Returns None for unreadable files; detection then falls through to manual.
    """
    try:
        sheets = read_workbook(file_path, max_rows=max_rows)
    except Exception as e:
        logger.warning("Header extraction failed", extra={"file_path": file_path, "error": str(e)})
        return None
    if not sheets:
        return None

    rows = next(iter(sheets.values()))[:max_rows]
    for issuer, extractor in HEADER_EXTRACTORS:
        last4 = extractor(rows)
        if last4:
            return CardInfo(last4=last4, issuer=issuer)
    return None
