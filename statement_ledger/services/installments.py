"""Installment reconciliation: projected placeholders, backfilled plans and twin purchases"""

import logging
from datetime import date
from typing import List, Optional, Set
from sqlalchemy.orm import Session
from statement_ledger.config import settings
from statement_ledger.domain.exceptions import ReconciliationError
from statement_ledger.domain.hashing import (
    generate_collision_group_id,
    generate_installment_group_id,
    generate_installment_transaction_hash,
)
from statement_ledger.domain.installments import generate_backfilled_plan, generate_installment_plan
from statement_ledger.domain.models import (
    Installment,
    InstallmentGroupResult,
    InstallmentInfo,
    InstallmentPaymentData,
    PaymentType,
    ReconciliationOutcome,
    ReconciliationResult,
    TransactionStatus,
)
from statement_ledger.infrastructure.database.models import Transaction
from statement_ledger.infrastructure.database.repositories import TransactionRepository
from statement_ledger.infrastructure.observability.metrics import installment_collision_counter

logger = logging.getLogger(__name__)


class InstallmentService:
    """
    Keeps one ledger row per payment of every installment plan.

    Plans are identified by a hash of {business, total deal sum, payment count,
    purchase date}. The first observed payment creates the whole plan: future
    payments become projected placeholders that later uploads promote in place.
    Lookups take a processed_ids set holding rows already consumed in the current
    batch, so two identical payments in one batch never bind to the same row.
    """

    def __init__(self, db: Session):
        self.db = db
        self.transactions = TransactionRepository(db)

    # Group creation

    def create_installment_group(
        self,
        data: InstallmentPaymentData,
        info: InstallmentInfo,
        group_id: Optional[str] = None,
    ) -> InstallmentGroupResult:
        """Plan first seen at payment 1: one completed row plus N-1 projected rows"""
        base_group_id = self._base_group_id(data, info)
        group_id, is_collision = self._resolve_group_id(base_group_id, group_id)

        plan = generate_installment_plan(
            first_payment_date=data.deal_date,
            installment_total=info.total,
            first_payment_amount=info.amount,
            total_deal_sum=self._local_deal_sum(data),
        )
        return self._persist_plan(data, info, plan, group_id, base_group_id, is_collision)

    def create_installment_group_from_middle(
        self,
        data: InstallmentPaymentData,
        info: InstallmentInfo,
        group_id: Optional[str] = None,
    ) -> InstallmentGroupResult:
        """
        Plan first seen at payment K > 1.

        Payment 1 is a completed ghost carrying whatever the total deal sum leaves
        after assuming every other payment equals the observed one. When the
        standard group id is already taken, a collision-escape id is used.
        """
        base_group_id = self._base_group_id(data, info)
        group_id, is_collision = self._resolve_group_id(base_group_id, group_id)

        plan = generate_backfilled_plan(
            first_payment_date=data.deal_date,
            installment_total=info.total,
            observed_index=info.index,
            observed_amount=info.amount,
            total_deal_sum=self._local_deal_sum(data),
        )
        return self._persist_plan(data, info, plan, group_id, base_group_id, is_collision)

    # Lookups

    def find_any_transaction_in_group(self, group_id: str) -> Optional[Transaction]:
        return self.transactions.first_in_group(group_id)

    def find_completed_payment1(
        self, data: InstallmentPaymentData, installment_total: int, processed_ids: Set[int]
    ) -> Optional[Transaction]:
        return self.transactions.find_installment_row(
            business_id=data.business_id,
            card_id=data.card_id,
            deal_date=data.deal_date,
            installment_total=installment_total,
            installment_index=1,
            original_amount=data.original_amount,
            status=TransactionStatus.COMPLETED.value,
            exclude_ids=processed_ids,
        )

    def find_projected_payment_in_bucket(
        self, data: InstallmentPaymentData, info: InstallmentInfo, processed_ids: Set[int]
    ) -> Optional[Transaction]:
        """Any projected slot at this index across the base group and its twins"""
        return self.transactions.find_installment_row(
            business_id=data.business_id,
            card_id=data.card_id,
            deal_date=data.deal_date,
            installment_total=info.total,
            installment_index=info.index,
            original_amount=data.original_amount,
            status=TransactionStatus.PROJECTED.value,
            exclude_ids=processed_ids,
        )

    def find_orphaned_backfilled_payment1(
        self, data: InstallmentPaymentData, installment_total: int, processed_ids: Set[int]
    ) -> Optional[Transaction]:
        """A computed ghost payment 1 still waiting for the real one"""
        return self.transactions.find_installment_row(
            business_id=data.business_id,
            card_id=data.card_id,
            deal_date=data.deal_date,
            installment_total=installment_total,
            installment_index=1,
            original_amount=data.original_amount,
            status=TransactionStatus.COMPLETED.value,
            exclude_ids=processed_ids,
            is_backfilled=True,
        )

    def find_exact_duplicate(
        self, data: InstallmentPaymentData, info: InstallmentInfo, processed_ids: Set[int]
    ) -> Optional[Transaction]:
        """Same payment already observed by an earlier batch"""
        return self.transactions.find_installment_row(
            business_id=data.business_id,
            card_id=data.card_id,
            deal_date=data.deal_date,
            installment_total=info.total,
            installment_index=info.index,
            original_amount=data.original_amount,
            status=TransactionStatus.COMPLETED.value,
            exclude_ids=processed_ids,
            is_backfilled=False,
            exclude_batch_id=data.upload_batch_id,
        )

    def match_installment_payment(self, expected_hash: str) -> Optional[Transaction]:
        return self.transactions.get_by_hash(expected_hash)

    def count_groups_with_base_id(self, base_group_id: str) -> int:
        return self.transactions.count_groups_with_base_id(base_group_id)

    # Promotion

    def complete_projected_installment(
        self,
        transaction_id: int,
        actual_charge_date: date,
        charged_amount_ils: float,
        exchange_rate_used: Optional[float] = None,
        source_file: Optional[str] = None,
        upload_batch_id: Optional[int] = None,
    ) -> Transaction:
        """
        Promote a placeholder (or ghost payment 1) to the observed payment in place.

        Raises:
            ReconciliationError: placeholder no longer exists
        """
        row = self.transactions.get(transaction_id)
        if row is None:
            raise ReconciliationError(f"Installment placeholder {transaction_id} not found")

        previous_amount = row.charged_amount_ils or 0.0
        if previous_amount and abs(charged_amount_ils - previous_amount) / previous_amount > settings.projection_discrepancy_ratio:
            logger.warning(
                "Observed installment differs from projection",
                extra={
                    "group_id": (row.installment_group_id or "")[:12],
                    "installment_index": row.installment_index,
                    "projected_amount": previous_amount,
                    "observed_amount": charged_amount_ils,
                },
            )

        row.status = TransactionStatus.COMPLETED.value
        row.charged_amount_ils = round(charged_amount_ils, 2)
        row.actual_charge_date = actual_charge_date
        row.exchange_rate_used = exchange_rate_used
        row.is_backfilled = False
        if source_file is not None:
            row.source_file = source_file
        if upload_batch_id is not None:
            row.upload_batch_id = upload_batch_id
        self.db.flush()
        return row

    # Orchestration

    def reconcile_payment(
        self,
        data: InstallmentPaymentData,
        info: InstallmentInfo,
        processed_ids: Set[int],
    ) -> ReconciliationResult:
        """
        Attach one observed installment payment to persisted state.

        New plan -> create it; ghost or projected slot -> promote in place;
        same payment from an earlier batch -> duplicate; otherwise a twin
        purchase -> new plan under a collision-escape id. Every row touched is
        added to processed_ids.
        """
        base_group_id = self._base_group_id(data, info)
        log_extra = {
            "group_id": base_group_id[:12],
            "installment_index": info.index,
            "installment_total": info.total,
        }

        if self.find_any_transaction_in_group(base_group_id) is None:
            result = self._create_group(data, info, base_group_id)
            processed_ids.add(result.observed_row_id)
            logger.debug("Created installment group", extra={**log_extra, "rows": len(result.row_ids)})
            return ReconciliationResult(
                outcome=ReconciliationOutcome.NEW,
                group_id=result.group_id,
                row_id=result.observed_row_id,
                rows_created=len(result.row_ids),
            )

        if info.index == 1:
            ghost = self.find_orphaned_backfilled_payment1(data, info.total, processed_ids)
            if ghost is not None:
                promoted = self._promote(ghost, data, info)
                processed_ids.add(promoted.id)
                logger.info("Replaced computed payment 1 with observed payment", extra=log_extra)
                return ReconciliationResult(
                    outcome=ReconciliationOutcome.UPDATED,
                    group_id=promoted.installment_group_id,
                    row_id=promoted.id,
                )

        slot = self.match_installment_payment(generate_installment_transaction_hash(base_group_id, info.index))
        if slot is None or slot.status != TransactionStatus.PROJECTED.value or slot.id in processed_ids:
            slot = self.find_projected_payment_in_bucket(data, info, processed_ids)
        if slot is not None:
            promoted = self._promote(slot, data, info)
            processed_ids.add(promoted.id)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UPDATED,
                group_id=promoted.installment_group_id,
                row_id=promoted.id,
            )

        duplicate = self.find_exact_duplicate(data, info, processed_ids)
        if duplicate is not None:
            processed_ids.add(duplicate.id)
            logger.debug("Installment payment already recorded", extra=log_extra)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.DUPLICATE,
                group_id=duplicate.installment_group_id,
                row_id=duplicate.id,
            )

        escape_group_id = self._escape_group_id(base_group_id)
        installment_collision_counter.inc()
        logger.warning(
            "Twin installment purchase, creating collision-escape group",
            extra={**log_extra, "escape_group_id": escape_group_id[:12]},
        )
        result = self._create_group(data, info, base_group_id, escape_group_id)
        processed_ids.add(result.observed_row_id)
        return ReconciliationResult(
            outcome=ReconciliationOutcome.NEW,
            group_id=result.group_id,
            row_id=result.observed_row_id,
            rows_created=len(result.row_ids),
        )

    # Helpers

    def _base_group_id(self, data: InstallmentPaymentData, info: InstallmentInfo) -> str:
        return generate_installment_group_id(
            data.business_normalized_name,
            data.original_amount,
            info.total,
            data.deal_date,
        )

    def _local_deal_sum(self, data: InstallmentPaymentData) -> Optional[float]:
        # Plan amounts are ILS; a foreign deal sum only identifies the plan
        if data.original_currency != settings.local_currency:
            return None
        return data.original_amount

    def _create_group(
        self,
        data: InstallmentPaymentData,
        info: InstallmentInfo,
        base_group_id: str,
        group_id: Optional[str] = None,
    ) -> InstallmentGroupResult:
        if info.index == 1:
            return self.create_installment_group(data, info, group_id or base_group_id)
        return self.create_installment_group_from_middle(data, info, group_id or base_group_id)

    def _resolve_group_id(self, base_group_id: str, group_id: Optional[str]) -> tuple[str, bool]:
        """Explicit ids are used as given; otherwise the base id unless already taken"""
        if group_id is not None:
            return group_id, group_id != base_group_id
        if self.find_any_transaction_in_group(base_group_id) is None:
            return base_group_id, False
        installment_collision_counter.inc()
        return self._escape_group_id(base_group_id), True

    def _escape_group_id(self, base_group_id: str) -> str:
        # Sequence starts at the number of groups already sharing the base id
        sequence = self.count_groups_with_base_id(base_group_id)
        while True:
            candidate = generate_collision_group_id(base_group_id, sequence)
            if self.find_any_transaction_in_group(candidate) is None:
                return candidate
            sequence += 1

    def _promote(self, row: Transaction, data: InstallmentPaymentData, info: InstallmentInfo) -> Transaction:
        return self.complete_projected_installment(
            row.id,
            actual_charge_date=data.bank_charge_date or row.projected_charge_date or data.deal_date,
            charged_amount_ils=info.amount,
            exchange_rate_used=data.exchange_rate_used,
            source_file=data.source_file,
            upload_batch_id=data.upload_batch_id,
        )

    def _persist_plan(
        self,
        data: InstallmentPaymentData,
        info: InstallmentInfo,
        plan: List[Installment],
        group_id: str,
        base_group_id: str,
        is_collision: bool,
    ) -> InstallmentGroupResult:
        row_ids: List[int] = []
        observed_row_id: Optional[int] = None

        for installment in plan:
            is_observed = installment.index == info.index
            row = Transaction(
                transaction_hash=generate_installment_transaction_hash(group_id, installment.index),
                transaction_type="installment",
                business_id=data.business_id,
                card_id=data.card_id,
                deal_date=data.deal_date,
                bank_charge_date=data.bank_charge_date if is_observed else None,
                original_amount=data.original_amount,
                original_currency=data.original_currency,
                exchange_rate_used=data.exchange_rate_used if is_observed else None,
                charged_amount_ils=installment.amount,
                payment_type=PaymentType.INSTALLMENTS.value,
                installment_group_id=group_id,
                installment_base_group_id=base_group_id,
                installment_index=installment.index,
                installment_total=info.total,
                is_backfilled=installment.is_backfilled,
                status=installment.status.value,
                projected_charge_date=installment.charge_date,
                actual_charge_date=(
                    (data.bank_charge_date or installment.charge_date)
                    if is_observed
                    else installment.charge_date if installment.status == TransactionStatus.COMPLETED else None
                ),
                source_file=data.source_file,
                upload_batch_id=data.upload_batch_id,
            )
            self.transactions.add(row)
            row_ids.append(row.id)
            if is_observed:
                observed_row_id = row.id

        if observed_row_id is None:
            raise ReconciliationError(f"Observed payment {info.index}/{info.total} missing from generated plan")

        return InstallmentGroupResult(
            group_id=group_id,
            base_group_id=base_group_id,
            row_ids=row_ids,
            observed_row_id=observed_row_id,
            projected_count=sum(1 for i in plan if i.status == TransactionStatus.PROJECTED),
            is_collision=is_collision,
        )
