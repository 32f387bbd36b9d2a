"""Unit tests for transaction and installment group identities"""

from datetime import date
from statement_ledger.domain.hashing import (
    generate_collision_group_id,
    generate_installment_group_id,
    generate_installment_transaction_hash,
    generate_transaction_hash,
    normalize_business_name,
)


def _hash(**overrides):
    fields = dict(
        normalized_business_name="shufersal deal",
        deal_date=date(2025, 7, 5),
        charged_amount_ils=250.5,
        card_last4="7229",
        payment_type="one_time",
        is_refund=False,
    )
    fields.update(overrides)
    return generate_transaction_hash(**fields)


def test_normalize_business_name():
    """Test lowercase, trimmed, collapsed whitespace"""
    assert normalize_business_name("  SHUFERSAL   Deal ") == "shufersal deal"


def test_transaction_hash_is_deterministic():
    """Test same inputs always produce the same 64-hex hash"""
    first = _hash()
    assert first == _hash()
    assert len(first) == 64
    int(first, 16)


def test_transaction_hash_changes_with_each_field():
    """Test each input participates in the hash"""
    base = _hash()
    assert _hash(charged_amount_ils=250.51) != base
    assert _hash(card_last4="1234") != base
    assert _hash(is_refund=True) != base
    assert _hash(deal_date=date(2025, 7, 6)) != base
    assert _hash(payment_type="subscription") != base


def test_transaction_hash_uses_absolute_amount():
    """Test sign of the amount does not change the hash"""
    assert _hash(charged_amount_ils=-250.5) == _hash()


def test_installment_group_id_ignores_card():
    """Test group identity is built from business, total, count and date only"""
    group_id = generate_installment_group_id("ikea", 3099.0, 24, date(2025, 7, 5))

    assert group_id == generate_installment_group_id("ikea", 3099.0, 24, date(2025, 7, 5))
    assert group_id != generate_installment_group_id("ikea", 3099.0, 12, date(2025, 7, 5))
    assert group_id != generate_installment_group_id("ikea", 3098.0, 24, date(2025, 7, 5))


def test_installment_transaction_hash_per_index():
    """Test each payment of a group gets its own hash"""
    group_id = generate_installment_group_id("ikea", 3099.0, 24, date(2025, 7, 5))

    assert generate_installment_transaction_hash(group_id, 1) != generate_installment_transaction_hash(group_id, 2)


def test_collision_group_id():
    """Test escape ids are deterministic, distinct per sequence and differ from the base"""
    base = generate_installment_group_id("ikea", 3099.0, 24, date(2025, 7, 5))

    first = generate_collision_group_id(base, 1)
    assert first == generate_collision_group_id(base, 1)
    assert first != generate_collision_group_id(base, 2)
    assert first != base
    assert len(first) == 64
