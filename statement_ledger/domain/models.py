"""Domain models - pure Python dataclasses representing statement and ledger entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, List, Optional


class PaymentType(str, Enum):
    ONE_TIME = "one_time"
    INSTALLMENTS = "installments"
    SUBSCRIPTION = "subscription"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"  # charge observed in a statement
    PROJECTED = "projected"  # future installment placeholder
    CANCELLED = "cancelled"


class Issuer(str, Enum):
    MAX = "MAX"
    VISA_CAL = "VISA-CAL"
    ISRACARD = "ISRACARD"


class DetectionStatus(str, Enum):
    VERIFIED = "VERIFIED"
    CLASH = "CLASH"
    NEW_CARD = "NEW_CARD"
    NEEDS_MANUAL = "NEEDS_MANUAL"


class DetectionTier(str, Enum):
    TIER_1_USER = "TIER_1_USER"
    TIER_2_FILENAME = "TIER_2_FILENAME"
    TIER_3_HEADER = "TIER_3_HEADER"
    TIER_4_MANUAL = "TIER_4_MANUAL"


class ReconciliationOutcome(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    DUPLICATE = "duplicate"


@dataclass
class ParsedTransaction:
    """Normalized statement row, not yet persisted"""

    business_name: str
    deal_date: date
    original_amount: float
    original_currency: str  # ISO 4217
    charged_amount_ils: float
    payment_type: PaymentType = PaymentType.ONE_TIME
    bank_charge_date: Optional[date] = None
    exchange_rate_used: Optional[float] = None
    installment_index: Optional[int] = None  # 1-based
    installment_total: Optional[int] = None
    is_refund: bool = False
    is_subscription: bool = False
    source_file_name: str = ""
    bank_category: Optional[str] = None
    notes: Optional[str] = None
    source_sheet: Optional[str] = None
    raw_row: Any = None

    def __post_init__(self) -> None:
        if self.payment_type == PaymentType.INSTALLMENTS:
            if self.installment_index is None or self.installment_total is None:
                raise ValueError("Installment transaction requires both index and total")
            if not 1 <= self.installment_index <= self.installment_total:
                raise ValueError(
                    f"Invalid installment: {self.installment_index}/{self.installment_total}"
                )


@dataclass
class ParserMetadata:
    """Statement-level facts extracted from banner/header cells"""

    card_last4: str
    statement_month: str  # "MM/YYYY" or localized, e.g. "יולי 2025"
    account_number: Optional[str] = None
    statement_date: Optional[date] = None
    total_amount: Optional[float] = None  # validation only, never persisted


@dataclass
class ParseIssue:
    """Row-level parse error or warning"""

    row: int
    message: str
    data: Any = None


@dataclass
class ValidationResult:
    """Declared statement total compared with the sum of parsed rows"""

    calculated_total: float
    difference: float
    is_valid: bool
    tolerance: float
    expected_total: Optional[float] = None


@dataclass
class ParserResult:
    metadata: ParserMetadata
    transactions: List[ParsedTransaction]
    errors: List[ParseIssue] = field(default_factory=list)
    warnings: List[ParseIssue] = field(default_factory=list)
    validation: Optional[ValidationResult] = None


@dataclass
class CardInfo:
    last4: str
    issuer: Issuer


@dataclass
class CardDetectionResult:
    """Outcome of the card-identity cascade; only VERIFIED proceeds automatically"""

    status: DetectionStatus
    tier: DetectionTier
    card_info: Optional[CardInfo]
    needs_user_confirmation: bool
    message: str
    db_card_id: Optional[int] = None
    clash_details: Optional[dict] = None


@dataclass
class InstallmentInfo:
    """Position of one observed payment inside its plan"""

    index: int  # 1-based payment number
    total: int  # number of payments in the plan
    amount: float  # per-payment amount actually charged


@dataclass
class InstallmentPaymentData:
    """Persisted facts shared by every row of an installment plan"""

    business_id: int
    business_normalized_name: str
    card_id: int
    deal_date: date
    original_amount: float  # total deal sum as printed in the statement
    original_currency: str
    charged_amount_ils: float
    source_file: str
    upload_batch_id: int
    exchange_rate_used: Optional[float] = None
    bank_charge_date: Optional[date] = None  # when the observed payment was charged


@dataclass
class Installment:
    """Single payment in a projected installment plan"""

    index: int
    charge_date: date
    amount: float
    status: TransactionStatus
    is_backfilled: bool = False


@dataclass
class InstallmentGroupResult:
    group_id: str
    base_group_id: str
    row_ids: List[int]
    observed_row_id: int
    projected_count: int
    is_collision: bool = False


@dataclass
class ReconciliationResult:
    outcome: ReconciliationOutcome
    group_id: Optional[str]
    row_id: Optional[int]
    rows_created: int = 0


@dataclass
class BatchSummary:
    """Counters reported when a batch finishes"""

    parsed_transactions: int = 0
    total_transactions: int = 0
    new_transactions: int = 0
    updated_transactions: int = 0
    duplicate_transactions: int = 0
    failed_transactions: int = 0
    total_amount_ils: float = 0.0
    failed_files: int = 0
