"""Installment plan projection for multi-payment credit-card purchases"""

from datetime import date
from typing import List, Optional
from statement_ledger.domain.models import Installment, TransactionStatus
from statement_ledger.utils.date_utils import add_months


def resolve_total_deal_sum(per_payment_amount: float, installment_total: int, original_total: Optional[float] = None) -> float:
    """Statement-printed total when known, otherwise per-payment amount times payment count"""
    if original_total:
        return round(original_total, 2)
    return round(per_payment_amount * installment_total, 2)


def compute_ghost_payment1_amount(total_deal_sum: float, per_payment_amount: float, installment_total: int) -> float:
    """
    Payment 1 amount inferred when a plan is first seen at a later payment.

    Assumes every payment other than the first equals the observed one, so
    payment 1 absorbs whatever is left of the total deal sum:
        3099 - 129 * 23 = 132
    """
    return round(total_deal_sum - per_payment_amount * (installment_total - 1), 2)


def projected_charge_date(first_payment_date: date, index: int) -> date:
    return add_months(first_payment_date, index - 1)


def generate_installment_plan(
    first_payment_date: date,
    installment_total: int,
    first_payment_amount: float,
    total_deal_sum: Optional[float] = None,
) -> List[Installment]:
    """
    Project a plan first observed at payment 1.

    Payment 1 is completed; payments 2..N are projected placeholders one
    calendar month apart. Placeholders split the remainder of the total deal
    sum evenly when it is known, otherwise repeat the first payment amount.

    Example:
        total 3099 over 24, payment 1 = 132 -> 23 placeholders of 129
    """
    if installment_total <= 0:
        return []

    if total_deal_sum and installment_total > 1:
        regular_amount = round((total_deal_sum - first_payment_amount) / (installment_total - 1), 2)
    else:
        regular_amount = round(first_payment_amount, 2)

    installments = [
        Installment(
            index=1,
            charge_date=first_payment_date,
            amount=round(first_payment_amount, 2),
            status=TransactionStatus.COMPLETED,
        )
    ]
    for index in range(2, installment_total + 1):
        installments.append(
            Installment(
                index=index,
                charge_date=projected_charge_date(first_payment_date, index),
                amount=regular_amount,
                status=TransactionStatus.PROJECTED,
            )
        )

    return installments


def generate_backfilled_plan(
    first_payment_date: date,
    installment_total: int,
    observed_index: int,
    observed_amount: float,
    total_deal_sum: Optional[float] = None,
) -> List[Installment]:
    """
    Project a plan first observed at payment K > 1.

    Payment 1 is a completed ghost carrying the computed leftover amount (the
    observed amount when the deal sum is unknown), payment K is the completed
    observation, every other index is projected at the observed amount.
    """
    if not 1 < observed_index <= installment_total:
        raise ValueError(f"Backfill requires 1 < index <= total, got {observed_index}/{installment_total}")

    installments = [
        Installment(
            index=1,
            charge_date=first_payment_date,
            amount=(
                compute_ghost_payment1_amount(total_deal_sum, observed_amount, installment_total)
                if total_deal_sum
                else round(observed_amount, 2)
            ),
            status=TransactionStatus.COMPLETED,
            is_backfilled=True,
        )
    ]
    for index in range(2, installment_total + 1):
        is_observed = index == observed_index
        installments.append(
            Installment(
                index=index,
                charge_date=projected_charge_date(first_payment_date, index),
                amount=round(observed_amount, 2),
                status=TransactionStatus.COMPLETED if is_observed else TransactionStatus.PROJECTED,
            )
        )

    return installments
