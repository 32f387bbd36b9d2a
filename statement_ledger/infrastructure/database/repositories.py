"""Data access layer for cards, businesses, batches, transactions and exchange rates"""

from datetime import date, datetime, timezone
from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from statement_ledger.infrastructure.database.models import (
    Business,
    Card,
    ExchangeRate,
    Transaction,
    UploadBatch,
    UploadedFile,
)

# Stored amounts are 2dp decimals; comparisons allow for float round-off
AMOUNT_EPSILON = 0.005


class CardRepository:
    """Repository for the card registry"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, card_id: int) -> Optional[Card]:
        return self.db.get(Card, card_id)

    def find_active(self, last4: str, owner: str) -> Optional[Card]:
        """First active card with these last 4 digits for the owner"""
        return (
            self.db.query(Card)
            .filter(Card.last4_digits == last4, Card.owner == owner, Card.is_active.is_(True))
            .order_by(Card.id)
            .first()
        )

    def list_by_owner(self, owner: str) -> List[Card]:
        return self.db.query(Card).filter(Card.owner == owner).order_by(Card.id).all()

    def create(
        self,
        owner: str,
        last4: str,
        file_format_handler: str,
        nickname: Optional[str] = None,
        bank_or_company: Optional[str] = None,
    ) -> Card:
        card = Card(
            owner=owner,
            last4_digits=last4,
            file_format_handler=file_format_handler,
            nickname=nickname,
            bank_or_company=bank_or_company,
            is_active=True,
        )
        self.db.add(card)
        self.db.flush()  # Get ID without committing
        return card


class BusinessRepository:
    """Repository for merchants"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, business_id: int) -> Optional[Business]:
        return self.db.get(Business, business_id)

    def get_by_normalized_name(self, normalized_name: str) -> Optional[Business]:
        return self.db.query(Business).filter(Business.normalized_name == normalized_name).first()

    def create(self, normalized_name: str, display_name: str) -> Business:
        business = Business(normalized_name=normalized_name, display_name=display_name)
        self.db.add(business)
        self.db.flush()
        return business


class BatchRepository:
    """Repository for upload batches and their files"""

    def __init__(self, db: Session):
        self.db = db

    def create_batch(self, file_count: int) -> UploadBatch:
        batch = UploadBatch(file_count=file_count, status="pending")
        self.db.add(batch)
        self.db.flush()
        return batch

    def get_batch(self, batch_id: int) -> Optional[UploadBatch]:
        return self.db.get(UploadBatch, batch_id)

    def add_file(
        self,
        batch_id: int,
        filename: str,
        file_path: str,
        file_size: Optional[int] = None,
        card_id: Optional[int] = None,
    ) -> UploadedFile:
        uploaded_file = UploadedFile(
            upload_batch_id=batch_id,
            filename=filename,
            file_path=file_path,
            file_size=file_size,
            card_id=card_id,
            status="pending",
        )
        self.db.add(uploaded_file)
        self.db.flush()
        return uploaded_file

    def get_files(self, batch_id: int) -> List[UploadedFile]:
        return (
            self.db.query(UploadedFile)
            .filter(UploadedFile.upload_batch_id == batch_id)
            .order_by(UploadedFile.id)
            .all()
        )

    def mark_batch(self, batch: UploadBatch, status: str, error_message: Optional[str] = None) -> None:
        batch.status = status
        if error_message is not None:
            batch.error_message = error_message
        now = datetime.now(timezone.utc)
        if status == "processing":
            batch.processing_started_at = now
        elif status in ("completed", "failed"):
            batch.processing_completed_at = now
        self.db.flush()

    def mark_file(
        self,
        uploaded_file: UploadedFile,
        status: str,
        error_message: Optional[str] = None,
        transactions_found: Optional[int] = None,
        validation_warning: Optional[str] = None,
    ) -> None:
        uploaded_file.status = status
        uploaded_file.error_message = error_message
        if transactions_found is not None:
            uploaded_file.transactions_found = transactions_found
        if validation_warning is not None:
            uploaded_file.validation_warning = validation_warning
        if status in ("completed", "failed"):
            uploaded_file.processed_at = datetime.now(timezone.utc)
        self.db.flush()


class TransactionRepository:
    """Repository for ledger rows, including installment placeholders"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, transaction: Transaction) -> Transaction:
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get(self, transaction_id: int) -> Optional[Transaction]:
        return self.db.get(Transaction, transaction_id)

    def get_by_hash(self, transaction_hash: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.transaction_hash == transaction_hash).first()

    def hash_exists(self, transaction_hash: str) -> bool:
        return self.db.query(Transaction.id).filter(Transaction.transaction_hash == transaction_hash).first() is not None

    def first_in_group(self, group_id: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.installment_group_id == group_id).first()

    def list_group(self, group_id: str) -> List[Transaction]:
        """Rows of one installment group ordered by payment index"""
        return (
            self.db.query(Transaction)
            .filter(Transaction.installment_group_id == group_id)
            .order_by(Transaction.installment_index, Transaction.id)
            .all()
        )

    def count_groups_with_base_id(self, base_group_id: str) -> int:
        return (
            self.db.query(func.count(func.distinct(Transaction.installment_group_id)))
            .filter(Transaction.installment_base_group_id == base_group_id)
            .scalar()
            or 0
        )

    def find_installment_row(
        self,
        business_id: int,
        card_id: int,
        deal_date: date,
        installment_total: int,
        installment_index: int,
        original_amount: float,
        status: str,
        exclude_ids: Iterable[int] = (),
        is_backfilled: Optional[bool] = None,
        exclude_batch_id: Optional[int] = None,
    ) -> Optional[Transaction]:
        """
        Locate one installment row by plan metadata.

        Matches on the total deal amount rather than the per-payment charge so a
        computed ghost still matches the real payment that replaces it. Rows in
        exclude_ids were already consumed earlier in the same batch.
        """
        query = self.db.query(Transaction).filter(
            Transaction.payment_type == "installments",
            Transaction.business_id == business_id,
            Transaction.card_id == card_id,
            Transaction.deal_date == deal_date,
            Transaction.installment_total == installment_total,
            Transaction.installment_index == installment_index,
            Transaction.original_amount.between(original_amount - AMOUNT_EPSILON, original_amount + AMOUNT_EPSILON),
            Transaction.status == status,
        )
        excluded = list(exclude_ids)
        if excluded:
            query = query.filter(Transaction.id.notin_(excluded))
        if is_backfilled is not None:
            query = query.filter(Transaction.is_backfilled.is_(is_backfilled))
        if exclude_batch_id is not None:
            query = query.filter(
                (Transaction.upload_batch_id != exclude_batch_id) | (Transaction.upload_batch_id.is_(None))
            )
        return query.order_by(Transaction.id).first()


class ExchangeRateRepository:
    """Repository for cached exchange rates"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, rate_date: date, currency: str) -> Optional[ExchangeRate]:
        return self.db.get(ExchangeRate, (rate_date, currency))

    def upsert(self, rate_date: date, currency: str, rate_to_ils: float, source: str = "api") -> ExchangeRate:
        existing = self.get(rate_date, currency)
        if existing is not None:
            existing.rate_to_ils = rate_to_ils
            existing.source = source
            self.db.flush()
            return existing

        rate = ExchangeRate(date=rate_date, currency=currency, rate_to_ils=rate_to_ils, source=source)
        self.db.add(rate)
        self.db.flush()
        return rate
