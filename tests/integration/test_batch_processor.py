"""Integration tests for upload batch processing"""

import pytest
from unittest.mock import AsyncMock
from sqlalchemy.orm import Session
from statement_ledger.domain.exceptions import JobSubmissionError
from statement_ledger.domain.models import BatchSummary
from statement_ledger.infrastructure.database.models import Transaction, UploadBatch, UploadedFile
from statement_ledger.infrastructure.database.repositories import BatchRepository
from statement_ledger.services.batch_processor import build_batch_notice, process_batch


@pytest.fixture
def queue_batch(db: Session):
    """Create a pending batch holding the given (path, card) files"""

    def _queue(*files) -> int:
        batches = BatchRepository(db)
        batch = batches.create_batch(file_count=len(files))
        for path, card in files:
            batches.add_file(batch.id, filename=path.rsplit("/", 1)[-1], file_path=path, card_id=card.id)
        db.commit()
        return batch.id

    return _queue


async def test_process_max_file(db: Session, make_card, max_workbook, statement_rows, queue_batch, job_submitter):
    card = make_card("7229", "max")
    path = max_workbook([statement_rows.max("שופרסל", 250.5), statement_rows.max("סונול", 180.0)])
    batch_id = queue_batch((path, card))

    summary = await process_batch(db, batch_id, job_submitter)

    batch = db.get(UploadBatch, batch_id)
    assert summary.new_transactions == 2
    assert batch.status == "completed"
    assert batch.new_transactions == 2
    assert batch.total_amount_ils == 430.5
    assert batch.error_message is None
    assert batch.files[0].status == "completed"
    assert batch.files[0].transactions_found == 2
    assert db.query(Transaction).count() == 2
    job_submitter.submit.assert_awaited_once_with("categorize-businesses", {"batch_id": batch_id})


async def test_reupload_is_all_duplicates(db: Session, make_card, max_workbook, statement_rows, queue_batch):
    """Test a second upload of the same file adds nothing and leaves a notice"""
    card = make_card("7229", "max")
    path = max_workbook([statement_rows.max("שופרסל", 250.5), statement_rows.max("סונול", 180.0)])
    await process_batch(db, queue_batch((path, card)))

    second_id = queue_batch((path, card))
    summary = await process_batch(db, second_id)

    batch = db.get(UploadBatch, second_id)
    assert summary.duplicate_transactions == 2
    assert summary.new_transactions == 0
    assert batch.status == "completed"
    assert batch.error_message == "All 2 transactions already exist in the system"
    assert db.query(Transaction).count() == 2


async def test_failed_file_does_not_stop_batch(db: Session, make_card, max_workbook, statement_rows, queue_batch, tmp_path):
    """Test a broken file is marked failed while the next file is committed"""
    card = make_card("7229", "max")
    broken = tmp_path / "broken.xlsx"
    broken.write_text("not a workbook")
    good = max_workbook([statement_rows.max("שופרסל", 250.5)])
    batch_id = queue_batch((str(broken), card), (good, card))

    summary = await process_batch(db, batch_id)

    files = db.query(UploadedFile).filter(UploadedFile.upload_batch_id == batch_id).order_by(UploadedFile.id).all()
    assert summary.failed_files == 1
    assert [f.status for f in files] == ["failed", "completed"]
    assert files[0].error_message
    assert db.get(UploadBatch, batch_id).status == "completed"
    assert db.query(Transaction).count() == 1


async def test_metadata_failure_marks_file_failed(db: Session, make_card, visa_cal_workbook, statement_rows, queue_batch):
    card = make_card("2446", "visa-cal")
    path = visa_cal_workbook([statement_rows.visa("א", 10.0)], card_last4="XX")
    batch_id = queue_batch((path, card))

    await process_batch(db, batch_id)

    uploaded = db.get(UploadBatch, batch_id).files[0]
    assert uploaded.status == "failed"
    assert "card last 4" in uploaded.error_message


async def test_sum_mismatch_sets_validation_warning(db: Session, make_card, visa_cal_workbook, statement_rows, queue_batch):
    card = make_card("2446", "visa-cal")
    path = visa_cal_workbook([statement_rows.visa("רמי לוי", 100.0)], charge_total="500.00")
    batch_id = queue_batch((path, card))

    await process_batch(db, batch_id)

    uploaded = db.get(UploadBatch, batch_id).files[0]
    assert uploaded.status == "completed"
    assert uploaded.validation_warning.startswith("Sum mismatch")


async def test_installment_rows_are_reconciled(db: Session, make_card, visa_cal_workbook, statement_rows, queue_batch):
    """Test an installment row creates its whole plan"""
    card = make_card("2446", "visa-cal")
    path = visa_cal_workbook(
        [statement_rows.visa("איקאה", 132.0, original=3099.0, transaction_type="תשלומים", notes="תשלום 1 מתוך 24")]
    )

    summary = await process_batch(db, queue_batch((path, card)))

    assert summary.parsed_transactions == 1
    assert summary.new_transactions == 24
    assert summary.total_amount_ils == 132.0
    assert db.query(Transaction).filter(Transaction.status == "projected").count() == 23


async def test_foreign_row_without_rate_uses_rate_service(db: Session, make_card, max_workbook, statement_rows, queue_batch):
    """Test foreign rows without a parser rate are converted through the rate service"""
    card = make_card("7229", "max")
    path = max_workbook([statement_rows.max("AMAZON", 360.0, original=100.0, original_currency="USD")])
    rates = AsyncMock()
    rates.get_rate.return_value = 3.7

    await process_batch(db, queue_batch((path, card)), exchange_rates=rates)

    txn = db.query(Transaction).one()
    assert txn.charged_amount_ils == 370.0
    assert txn.exchange_rate_used == 3.7


async def test_job_submission_failure_keeps_batch_completed(db: Session, make_card, max_workbook, statement_rows, queue_batch):
    card = make_card("7229", "max")
    path = max_workbook([statement_rows.max("שופרסל", 250.5)])
    batch_id = queue_batch((path, card))
    submitter = AsyncMock()
    submitter.submit.side_effect = JobSubmissionError("queue down")

    await process_batch(db, batch_id, submitter)

    assert db.get(UploadBatch, batch_id).status == "completed"


async def test_missing_batch_raises(db: Session):
    with pytest.raises(ValueError):
        await process_batch(db, 12345)


def test_build_batch_notice():
    assert build_batch_notice(BatchSummary(parsed_transactions=3, new_transactions=3, total_transactions=3)) is None
    assert (
        build_batch_notice(BatchSummary(parsed_transactions=1, duplicate_transactions=1))
        == "All 1 transaction already exist in the system"
    )
    assert build_batch_notice(BatchSummary(parsed_transactions=3, new_transactions=2, duplicate_transactions=1)) == (
        "1 duplicate transaction found and skipped. 2 transactions were processed."
    )


async def test_foreign_installment_plan_keeps_identity_across_statements(
    db: Session, make_card, visa_cal_workbook, statement_rows, queue_batch
):
    """Test a dollar plan charged at different ILS amounts each month stays one group"""
    card = make_card("2446", "visa-cal")

    def statement(index: int, charged: float, file_name: str, charge_date: str) -> str:
        row = statement_rows.visa(
            "BOOKING.COM", charged, original="$ 300.00", transaction_type="תשלומים", notes=f"תשלום {index} מתוך 3"
        )
        return visa_cal_workbook([row], file_name=file_name, charge_date=charge_date)

    await process_batch(db, queue_batch((statement(1, 370.0, "july.xlsx", "10/08/2025"), card)))
    summary = await process_batch(db, queue_batch((statement(2, 365.0, "august.xlsx", "10/09/2025"), card)))

    rows = db.query(Transaction).order_by(Transaction.installment_index).all()
    assert summary.updated_transactions == 1
    assert len(rows) == 3
    assert len({row.installment_group_id for row in rows}) == 1
    assert {row.original_amount for row in rows} == {300.0}
    assert [row.status for row in rows] == ["completed", "completed", "projected"]
    assert rows[1].charged_amount_ils == 365.0
    # Placeholders repeat the observed ILS payment
    assert rows[2].charged_amount_ils == 370.0
