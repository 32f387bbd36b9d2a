"""Deterministic SHA-256 identities for transactions and installment groups"""

import hashlib
from datetime import date


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_business_name(name: str) -> str:
    return " ".join(name.split()).lower()


def generate_transaction_hash(
    normalized_business_name: str,
    deal_date: date,
    charged_amount_ils: float,
    card_last4: str,
    payment_type: str,
    is_refund: bool,
    installment_index: int = 0,
) -> str:
    """
    Content hash for non-installment rows.

    Inputs joined with "|": business, deal date, absolute ILS amount (2dp),
    card last 4, installment index (0 when absent), payment type (one_time is
    hashed as "regular"), refund flag.
    """
    hash_input = "|".join(
        [
            normalized_business_name,
            deal_date.isoformat(),
            f"{abs(charged_amount_ils):.2f}",
            card_last4,
            str(installment_index),
            "regular" if payment_type == "one_time" else payment_type,
            "true" if is_refund else "false",
        ]
    )
    return _sha256(hash_input)


def generate_installment_group_id(
    normalized_business_name: str,
    total_payment_sum: float,
    installment_total: int,
    deal_date: date,
) -> str:
    """Group identity shared by every payment of one purchase; independent of the card"""
    hash_input = f"{normalized_business_name}|{total_payment_sum:.2f}|{installment_total}|{deal_date.isoformat()}"
    return _sha256(hash_input)


def generate_installment_transaction_hash(installment_group_id: str, installment_index: int) -> str:
    return _sha256(f"{installment_group_id}|{installment_index}")


def generate_collision_group_id(base_group_id: str, sequence: int) -> str:
    """Escape id for a twin purchase whose base identity is already taken"""
    return _sha256(f"{base_group_id}|twin|{sequence}")
