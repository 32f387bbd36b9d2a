"""Statement total validation"""

from typing import List, Optional
from statement_ledger.domain.models import ParsedTransaction, ValidationResult

DEFAULT_TOLERANCE = 10.0


def validate_transaction_total(
    transactions: List[ParsedTransaction],
    expected_total: Optional[float] = None,
    tolerance: float = DEFAULT_TOLERANCE,
) -> ValidationResult:
    """
    Compare the file-declared total with the sum of parsed ILS amounts.

    A missing declared total is always valid. The result is attached to the
    parse result and surfaced as a warning; it never raises.
    """
    # Refunds are stored as absolute amounts and credit the statement
    calculated_total = round(
        sum(-txn.charged_amount_ils if txn.is_refund else txn.charged_amount_ils for txn in transactions),
        2,
    )
    difference = round(abs(expected_total - calculated_total), 2) if expected_total else 0.0

    return ValidationResult(
        expected_total=expected_total,
        calculated_total=calculated_total,
        difference=difference,
        is_valid=not expected_total or difference <= tolerance,
        tolerance=tolerance,
    )
