"""Filename conventions that encode a card's last 4 digits, per issuer"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from statement_ledger.domain.models import CardInfo, Issuer


@dataclass
class FilenamePattern:
    pattern: re.Pattern
    group: int
    description: str
    examples: List[str] = field(default_factory=list)


@dataclass
class IssuerConfig:
    issuer: Issuer
    display_name: str
    parser_name: str
    patterns: List[FilenamePattern]


# Issuers and patterns are tried in order; first match wins
ISSUER_CONFIGS: List[IssuerConfig] = [
    IssuerConfig(
        issuer=Issuer.MAX,
        display_name="MAX (Discount Bank)",
        parser_name="max",
        patterns=[
            FilenamePattern(
                re.compile(r"^(\d{2})\.(\d{2})\s*-\s*(\d{4})\.xlsx$"),
                group=3,
                description="MM.YY - XXXX.xlsx",
                examples=["08.25 - 7229.xlsx", "12.24 - 1234.xlsx"],
            ),
            FilenamePattern(
                re.compile(r"^MAX[_\s-](\d{4})[_\s-]\d{2}[_\s-]\d{2,4}\.xlsx$", re.IGNORECASE),
                group=1,
                description="MAX_XXXX_MM_YYYY.xlsx",
                examples=["MAX_7229_08_2025.xlsx", "max-1234-12-24.xlsx"],
            ),
        ],
    ),
    IssuerConfig(
        issuer=Issuer.VISA_CAL,
        display_name="VISA CAL (Discount Bank)",
        parser_name="visa-cal",
        patterns=[
            FilenamePattern(
                re.compile(r"פירוט חיובים לכרטיס ויזה (\d{4})"),
                group=1,
                description="Hebrew title embedded in filename",
                examples=["פירוט חיובים לכרטיס ויזה 2446.xlsx"],
            ),
            FilenamePattern(
                re.compile(r"^VISA[_\s-]?CAL[_\s-](\d{4})[_\s-]?\d{2}[_\s-]?\d{2,4}\.xlsx$", re.IGNORECASE),
                group=1,
                description="VISA-CAL-XXXX-MM-YYYY.xlsx",
                examples=["VISA-CAL-2446-08-2025.xlsx", "visa_cal_1234_12_24.xlsx"],
            ),
            FilenamePattern(
                re.compile(r"^(\d{4})_VISA_CAL_\d{2}_\d{2,4}\.xlsx$"),
                group=1,
                description="XXXX_VISA_CAL_MM_YYYY.xlsx",
                examples=["2446_VISA_CAL_08_2025.xlsx"],
            ),
        ],
    ),
    IssuerConfig(
        issuer=Issuer.ISRACARD,
        display_name="Isracard / AMEX",
        parser_name="isracard",
        patterns=[
            FilenamePattern(
                re.compile(r"^(\d{4})_(\d{2})_(\d{4})(\.xlsx)?$"),
                group=1,
                description="XXXX_MM_YYYY or XXXX_MM_YYYY.xlsx",
                examples=["8041_01_2025", "8582_08_2025.xlsx"],
            ),
            FilenamePattern(
                re.compile(r"^ISRACARD[_\s-](\d{4})[_\s-]\d{2}[_\s-]\d{2,4}\.xlsx$", re.IGNORECASE),
                group=1,
                description="ISRACARD_XXXX_MM_YYYY.xlsx",
                examples=["ISRACARD_8041_01_2025.xlsx", "isracard-7547-10-25.xlsx"],
            ),
            FilenamePattern(
                re.compile(r"^AMEX[_\s-](\d{4})[_\s-]\d{2}[_\s-]\d{2,4}\.xlsx$", re.IGNORECASE),
                group=1,
                description="AMEX_XXXX_MM_YYYY.xlsx",
                examples=["AMEX_8041_01_2025.xlsx", "amex-8582-08-25.xlsx"],
            ),
        ],
    ),
]


def extract_card_from_filename(filename: str) -> Optional[CardInfo]:
    for config in ISSUER_CONFIGS:
        for filename_pattern in config.patterns:
            match = filename_pattern.pattern.search(filename)
            if not match:
                continue
            last4 = match.group(filename_pattern.group)
            if last4 and re.fullmatch(r"\d{4}", last4):
                return CardInfo(last4=last4, issuer=config.issuer)
    return None


def get_issuer_patterns(issuer: Issuer) -> List[FilenamePattern]:
    for config in ISSUER_CONFIGS:
        if config.issuer == issuer:
            return config.patterns
    return []


def validate_filename_format(filename: str, issuer: Issuer) -> bool:
    return any(p.pattern.search(filename) for p in get_issuer_patterns(issuer))
