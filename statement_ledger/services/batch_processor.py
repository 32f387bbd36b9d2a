"""Upload batch processing: parse every file, resolve businesses, reconcile and persist rows"""

import logging
import time
from typing import Optional, Set
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from statement_ledger.config import settings
from statement_ledger.domain.exceptions import CardNotFoundError, ReconciliationError
from statement_ledger.domain.hashing import generate_transaction_hash
from statement_ledger.domain.installments import resolve_total_deal_sum
from statement_ledger.domain.models import (
    BatchSummary,
    InstallmentInfo,
    InstallmentPaymentData,
    ParsedTransaction,
    ParserResult,
    PaymentType,
    ReconciliationOutcome,
    TransactionStatus,
)
from statement_ledger.infrastructure.clients.jobs import JobSubmitter
from statement_ledger.infrastructure.database.models import Card, Transaction, UploadedFile
from statement_ledger.infrastructure.database.repositories import BatchRepository, CardRepository, TransactionRepository
from statement_ledger.infrastructure.observability.logging import log_batch_summary
from statement_ledger.infrastructure.observability.metrics import (
    batch_duration_histogram,
    record_file,
    record_transactions,
)
from statement_ledger.parsers.registry import select_parser
from statement_ledger.services.businesses import BusinessService
from statement_ledger.services.exchange_rates import ExchangeRateService
from statement_ledger.services.installments import InstallmentService

logger = logging.getLogger(__name__)

SANITIZED_DB_ERROR = "Row processing failed: Duplicate or Invalid Data"


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def build_batch_notice(summary: BatchSummary) -> Optional[str]:
    """Duplicate notice stored in the batch error_message while the batch stays completed"""
    processed = summary.new_transactions + summary.updated_transactions
    if (
        summary.parsed_transactions > 0
        and processed == 0
        and summary.duplicate_transactions == summary.parsed_transactions
    ):
        count = summary.duplicate_transactions
        return f"All {count} {_plural(count, 'transaction', 'transactions')} already exist in the system"
    if summary.duplicate_transactions > 0:
        count = summary.duplicate_transactions
        return (
            f"{count} duplicate {_plural(count, 'transaction', 'transactions')} found and skipped. "
            f"{processed} {_plural(processed, 'transaction was', 'transactions were')} processed."
        )
    return None


class BatchProcessor:
    """
    Processes the pending files of one upload batch, in upload order.

    Each file is committed on its own: a failing file is rolled back and marked
    failed while earlier and later files keep their rows.
    """

    def __init__(
        self,
        db: Session,
        job_submitter: Optional[JobSubmitter] = None,
        exchange_rates: Optional[ExchangeRateService] = None,
    ):
        self.db = db
        self.job_submitter = job_submitter
        self.exchange_rates = exchange_rates
        self.batches = BatchRepository(db)
        self.cards = CardRepository(db)
        self.transactions = TransactionRepository(db)
        self.businesses = BusinessService(db)
        self.installments = InstallmentService(db)

    async def process(self, batch_id: int) -> BatchSummary:
        """
        Raises:
            Exception: fatal errors outside any single file; the batch is marked failed first
        """
        started = time.perf_counter()
        summary = BatchSummary()
        logger.info("Starting batch processing", extra={"batch_id": batch_id})

        try:
            batch = self.batches.get_batch(batch_id)
            if batch is None:
                raise ValueError(f"Upload batch {batch_id} not found")
            self.batches.mark_batch(batch, "processing")
            self.db.commit()

            files = [f for f in self.batches.get_files(batch_id) if f.card_id is not None and f.status == "pending"]
            # Rows consumed in this batch; keeps twin payments off the same placeholder
            processed_ids: Set[int] = set()

            for uploaded_file in files:
                await self._process_file(batch_id, uploaded_file.id, summary, processed_ids)

            notice = build_batch_notice(summary)
            batch = self.batches.get_batch(batch_id)
            batch.total_transactions = summary.total_transactions
            batch.new_transactions = summary.new_transactions
            batch.updated_transactions = summary.updated_transactions
            batch.duplicate_transactions = summary.duplicate_transactions
            batch.total_amount_ils = round(summary.total_amount_ils, 2)
            self.batches.mark_batch(batch, "completed", error_message=notice)
            self.db.commit()

        except Exception as e:
            logger.error(f"Fatal error processing batch {batch_id}", exc_info=True, extra={"batch_id": batch_id})
            self.db.rollback()
            message = SANITIZED_DB_ERROR if isinstance(e, SQLAlchemyError) else str(e)
            batch = self.batches.get_batch(batch_id)
            if batch is not None:
                self.batches.mark_batch(batch, "failed", error_message=message)
                self.db.commit()
            raise

        duration = time.perf_counter() - started
        batch_duration_histogram.observe(duration)
        log_batch_summary(
            batch_id=batch_id,
            status="completed",
            total_transactions=summary.total_transactions,
            new_transactions=summary.new_transactions,
            updated_transactions=summary.updated_transactions,
            duplicate_transactions=summary.duplicate_transactions,
            failed_files=summary.failed_files,
            duration_ms=round(duration * 1000, 2),
            notice=notice,
        )

        await self._submit_categorization(batch_id)
        return summary

    async def _process_file(
        self,
        batch_id: int,
        file_id: int,
        summary: BatchSummary,
        processed_ids: Set[int],
    ) -> None:
        uploaded_file = self.db.get(UploadedFile, file_id)
        log_extra = {"batch_id": batch_id, "file_name": uploaded_file.filename}
        logger.info("Processing file", extra=log_extra)

        parser_name = "unknown"
        file_summary = BatchSummary()
        # Working copy; merged back only once the file commits
        file_processed_ids = set(processed_ids)
        try:
            card = self.cards.get(uploaded_file.card_id)
            if card is None:
                raise CardNotFoundError(f"Card not found for file {uploaded_file.filename}")

            parser = select_parser(card.file_format_handler, uploaded_file.filename)
            parser_name = parser.get_name()
            result = parser.parse(uploaded_file.file_path)
            validation_warning = self._validation_warning(result, uploaded_file.filename)

            for issue in result.errors:
                logger.warning(
                    "Row skipped",
                    extra={**log_extra, "row": issue.row, "error": issue.message},
                )
            for issue in result.warnings:
                logger.info("Parser warning", extra={**log_extra, "row": issue.row, "warning": issue.message})

            for parsed in result.transactions:
                file_summary.parsed_transactions += 1
                try:
                    await self._process_transaction(
                        parsed, card, uploaded_file, batch_id, file_summary, file_processed_ids
                    )
                except ReconciliationError as e:
                    file_summary.failed_transactions += 1
                    logger.error(
                        "Installment reconciliation failed, transaction skipped",
                        extra={**log_extra, "business_name": parsed.business_name, "error": str(e)},
                    )

            file_summary.failed_transactions += len(result.errors)
            self.batches.mark_file(
                uploaded_file,
                "completed",
                transactions_found=len(result.transactions),
                validation_warning=validation_warning,
            )
            self.db.commit()

        except Exception as e:
            logger.error(f"File processing error: {uploaded_file.filename}", exc_info=True, extra=log_extra)
            self.db.rollback()
            uploaded_file = self.db.get(UploadedFile, file_id)
            message = SANITIZED_DB_ERROR if isinstance(e, SQLAlchemyError) else str(e)
            self.batches.mark_file(uploaded_file, "failed", error_message=message)
            self.db.commit()
            summary.failed_files += 1
            record_file(parser_name, completed=False)
            return

        processed_ids.update(file_processed_ids)
        summary.parsed_transactions += file_summary.parsed_transactions
        summary.total_transactions += file_summary.total_transactions
        summary.new_transactions += file_summary.new_transactions
        summary.updated_transactions += file_summary.updated_transactions
        summary.duplicate_transactions += file_summary.duplicate_transactions
        summary.failed_transactions += file_summary.failed_transactions
        summary.total_amount_ils += file_summary.total_amount_ils
        record_file(parser_name, completed=True)
        record_transactions(
            new=file_summary.new_transactions,
            updated=file_summary.updated_transactions,
            duplicate=file_summary.duplicate_transactions,
            failed=file_summary.failed_transactions,
        )

    async def _process_transaction(
        self,
        parsed: ParsedTransaction,
        card: Card,
        uploaded_file: UploadedFile,
        batch_id: int,
        summary: BatchSummary,
        processed_ids: Set[int],
    ) -> None:
        business = self.businesses.get_or_create_business(parsed.business_name)
        amount_ils, exchange_rate = await self._convert_currency(parsed)

        if parsed.payment_type == PaymentType.INSTALLMENTS:
            data = InstallmentPaymentData(
                business_id=business.id,
                business_normalized_name=business.normalized_name,
                card_id=card.id,
                deal_date=parsed.deal_date,
                original_amount=self._total_deal_sum(parsed, amount_ils),
                original_currency=parsed.original_currency,
                charged_amount_ils=amount_ils,
                source_file=uploaded_file.filename,
                upload_batch_id=batch_id,
                exchange_rate_used=exchange_rate,
                bank_charge_date=parsed.bank_charge_date,
            )
            info = InstallmentInfo(index=parsed.installment_index, total=parsed.installment_total, amount=amount_ils)
            result = self.installments.reconcile_payment(data, info, processed_ids)

            if result.outcome == ReconciliationOutcome.NEW:
                summary.new_transactions += result.rows_created
                summary.total_transactions += result.rows_created
                summary.total_amount_ils += amount_ils
            elif result.outcome == ReconciliationOutcome.UPDATED:
                summary.updated_transactions += 1
                summary.total_transactions += 1
                summary.total_amount_ils += amount_ils
            else:
                summary.duplicate_transactions += 1
            return

        transaction_hash = generate_transaction_hash(
            normalized_business_name=business.normalized_name,
            deal_date=parsed.deal_date,
            charged_amount_ils=amount_ils,
            card_last4=card.last4_digits,
            payment_type=parsed.payment_type.value,
            is_refund=parsed.is_refund,
            installment_index=parsed.installment_index or 0,
        )
        if self.transactions.hash_exists(transaction_hash):
            logger.debug("Skipping duplicate transaction", extra={"hash_prefix": transaction_hash[:8]})
            summary.duplicate_transactions += 1
            return

        is_subscription = parsed.payment_type == PaymentType.SUBSCRIPTION or parsed.is_subscription
        self.transactions.add(
            Transaction(
                transaction_hash=transaction_hash,
                transaction_type="subscription" if is_subscription else "one_time",
                business_id=business.id,
                card_id=card.id,
                deal_date=parsed.deal_date,
                bank_charge_date=parsed.bank_charge_date,
                original_amount=parsed.original_amount,
                original_currency=parsed.original_currency,
                exchange_rate_used=exchange_rate,
                charged_amount_ils=round(amount_ils, 2),
                payment_type=parsed.payment_type.value,
                status=TransactionStatus.COMPLETED.value,
                actual_charge_date=parsed.bank_charge_date or parsed.deal_date,
                is_refund=parsed.is_refund,
                is_subscription=is_subscription,
                bank_category=parsed.bank_category,
                notes=parsed.notes,
                source_file=uploaded_file.filename,
                upload_batch_id=batch_id,
            )
        )
        summary.new_transactions += 1
        summary.total_transactions += 1
        summary.total_amount_ils += amount_ils

    def _total_deal_sum(self, parsed: ParsedTransaction, amount_ils: float) -> float:
        """
        Total deal sum that identifies an installment plan.

        Every payment of a plan prints the same total. Foreign-currency totals stay
        in the deal currency, independent of the monthly exchange rate. A local
        total no larger than the payment itself means the file carried only the
        per-payment amount.
        """
        if parsed.original_currency != settings.local_currency and parsed.original_amount:
            return round(parsed.original_amount, 2)
        return resolve_total_deal_sum(
            amount_ils,
            parsed.installment_total,
            parsed.original_amount if parsed.original_amount > amount_ils else None,
        )

    async def _convert_currency(self, parsed: ParsedTransaction) -> tuple[float, Optional[float]]:
        """ILS amount and rate; looked up only when the parser supplied no rate for a foreign row"""
        if (
            parsed.original_currency == settings.local_currency
            or parsed.exchange_rate_used
            or self.exchange_rates is None
        ):
            return parsed.charged_amount_ils, parsed.exchange_rate_used

        rate = await self.exchange_rates.get_rate(parsed.deal_date, parsed.original_currency)
        if rate is None:
            logger.warning(
                "Exchange rate not found, using parser value",
                extra={
                    "currency": parsed.original_currency,
                    "date": parsed.deal_date.isoformat(),
                    "amount_used": parsed.charged_amount_ils,
                },
            )
            return parsed.charged_amount_ils, None

        amount_ils = round(parsed.original_amount * rate, 2)
        logger.info(
            "Currency converted",
            extra={
                "original_amount": parsed.original_amount,
                "original_currency": parsed.original_currency,
                "converted_amount": amount_ils,
                "rate": rate,
            },
        )
        return amount_ils, rate

    def _validation_warning(self, result: ParserResult, filename: str) -> Optional[str]:
        validation = result.validation
        if validation is None or validation.expected_total is None:
            return None

        logger.info(
            "Sum validation",
            extra={
                "file_name": filename,
                "expected_total": validation.expected_total,
                "calculated_total": validation.calculated_total,
                "difference": validation.difference,
                "transaction_count": len(result.transactions),
                "is_valid": validation.is_valid,
            },
        )
        if validation.is_valid:
            return None

        logger.warning("Sum mismatch exceeds tolerance", extra={"file_name": filename, "difference": validation.difference})
        return (
            f"Sum mismatch: Expected {validation.expected_total:.2f} ILS but calculated "
            f"{validation.calculated_total:.2f} ILS (difference: {validation.difference:.2f} ILS)"
        )

    async def _submit_categorization(self, batch_id: int) -> None:
        if self.job_submitter is None:
            return
        try:
            await self.job_submitter.submit(settings.categorize_job_name, {"batch_id": batch_id})
            logger.info("Triggered categorization job", extra={"batch_id": batch_id})
        except Exception as e:
            logger.error("Failed to trigger categorization job", extra={"batch_id": batch_id, "error": str(e)})


async def process_batch(
    db: Session,
    batch_id: int,
    job_submitter: Optional[JobSubmitter] = None,
    exchange_rates: Optional[ExchangeRateService] = None,
) -> BatchSummary:
    return await BatchProcessor(db, job_submitter, exchange_rates).process(batch_id)
