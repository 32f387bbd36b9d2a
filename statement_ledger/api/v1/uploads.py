"""POST /v1/uploads - store statement files, detect their cards and queue batch processing"""

import json
import logging
import os
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from statement_ledger.api.dependencies import (
    get_exchange_rate_client,
    get_job_submitter,
    get_request_id,
    get_session_factory,
)
from statement_ledger.api.v1.schemas import CardMapping, DetectionResponse, UploadResponse
from statement_ledger.config import settings
from statement_ledger.domain.models import CardInfo
from statement_ledger.infrastructure.clients.exchange_rates import BankOfIsraelClient
from statement_ledger.infrastructure.clients.jobs import JobSubmitter
from statement_ledger.infrastructure.database.repositories import BatchRepository, CardRepository
from statement_ledger.infrastructure.database.session import get_db
from statement_ledger.parsers.registry import issuer_for_handler
from statement_ledger.services.batch_processor import process_batch
from statement_ledger.services.card_detection import CardDetectionService
from statement_ledger.services.exchange_rates import ExchangeRateService

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_FILE_COUNT = 100
ALLOWED_EXTENSIONS = (".xlsx",)

_card_mappings_adapter = TypeAdapter(List[CardMapping])


def sanitize_filename(filename: str) -> str:
    """Basename without traversal sequences, separators, null bytes or leading/trailing dots"""
    sanitized = filename.replace("..", "").replace("/", "").replace("\\", "").replace("\0", "")
    sanitized = os.path.basename(sanitized).strip(" .")
    return sanitized or "file"


def validate_upload(filename: str, size: int) -> Optional[str]:
    """Error message for an unacceptable file, None when it may be stored"""
    if size > MAX_FILE_SIZE:
        return (
            f'File "{filename}" exceeds maximum size of {MAX_FILE_SIZE // (1024 * 1024)}MB. '
            f"File size: {size / (1024 * 1024):.2f}MB"
        )
    if size == 0:
        return f'File "{filename}" is empty'
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        return f'File "{filename}" has invalid extension. Allowed extensions: {", ".join(ALLOWED_EXTENSIONS)}'
    if os.path.basename(filename) != filename or ".." in filename or "\\" in filename:
        return f'File "{filename}" contains invalid characters or path traversal sequences'
    return None


def write_file(file_path: str, data: bytes) -> None:
    with open(file_path, "wb") as f:
        f.write(data)


def parse_card_mappings(raw: Optional[str]) -> List[CardMapping]:
    if not raw:
        return []
    try:
        return _card_mappings_adapter.validate_python(json.loads(raw))
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in card_mappings: {e}")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid card_mappings: {e.errors()}")


async def run_batch(
    batch_id: int,
    session_factory: sessionmaker,
    job_submitter: JobSubmitter,
    rate_client: BankOfIsraelClient,
) -> None:
    """Background task: process the batch with a session of its own"""
    db = session_factory()
    try:
        await process_batch(db, batch_id, job_submitter, ExchangeRateService(db, rate_client))
    except Exception:
        # The processor already marked the batch failed
        logger.error("Background batch processing failed", exc_info=True, extra={"batch_id": batch_id})
    finally:
        db.close()


@router.post("/uploads", response_model=UploadResponse)
async def create_upload(
    request: Request,
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    owner: str = Form(..., min_length=1),
    card_mappings: Optional[str] = Form(None),
    override_validation: bool = Form(False),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    job_submitter: JobSubmitter = Depends(get_job_submitter),
    rate_client: BankOfIsraelClient = Depends(get_exchange_rate_client),
):
    """
    Accept a batch of statement files.

    Flow:
    1. Validate file count, size and extension, and the card mappings
    2. Store each file under the batch directory
    3. Run card detection per file (a mapped card is tier-1 evidence)
    4. Block the whole batch with 400 if any file needs user confirmation
    5. Otherwise queue background processing and return the batch id
    """
    request_id = get_request_id(request)

    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > MAX_FILE_COUNT:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum {MAX_FILE_COUNT} files allowed, received {len(files)}",
        )

    contents = []
    for upload in files:
        data = await upload.read()
        error = validate_upload(upload.filename or "", len(data))
        if error:
            raise HTTPException(status_code=400, detail=error)
        contents.append((upload.filename, data))

    stored_names = [sanitize_filename(name) for name, _ in contents]
    duplicates = sorted({name for name in stored_names if stored_names.count(name) > 1})
    if duplicates:
        raise HTTPException(
            status_code=400,
            detail=f"Duplicate file names in upload: {', '.join(duplicates)}",
        )

    mappings = {m.filename: m for m in parse_card_mappings(card_mappings)}
    unknown = [name for name in mappings if name not in {name for name, _ in contents}]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"card_mappings reference files that were not uploaded: {', '.join(unknown)}",
        )

    batches = BatchRepository(db)
    card_repo = CardRepository(db)
    detection = CardDetectionService(db)

    batch = batches.create_batch(file_count=len(contents))
    batch_dir = os.path.join(settings.upload_dir, f"batch_{batch.id}")
    os.makedirs(batch_dir, exist_ok=True)

    needing_approval: List[DetectionResponse] = []
    for (original_name, data), stored_name in zip(contents, stored_names):
        file_path = os.path.join(batch_dir, stored_name)
        await run_in_threadpool(write_file, file_path, data)

        mapping = mappings.get(original_name)
        mapped_card = card_repo.get(mapping.card_id) if mapping and mapping.card_id else None
        if mapping and mapping.card_id and mapped_card is None:
            db.rollback()
            raise HTTPException(status_code=404, detail=f"Card {mapping.card_id} not found")

        user_card = None
        if mapped_card is not None and issuer_for_handler(mapped_card.file_format_handler) is not None:
            user_card = CardInfo(last4=mapped_card.last4_digits, issuer=issuer_for_handler(mapped_card.file_format_handler))

        result = detection.detect_card(owner, file_path, original_name, user_card)

        if result.needs_user_confirmation and not override_validation:
            needing_approval.append(DetectionResponse.from_result(original_name, result))
            blocked = batches.add_file(batch.id, filename=stored_name, file_path=file_path, file_size=len(data))
            blocked.error_message = f"Validation required: {result.message}"
            continue

        if override_validation and mapped_card is not None:
            card_id = mapped_card.id
        else:
            card_id = result.db_card_id or (mapped_card.id if mapped_card else None)
        if card_id is None:
            db.rollback()
            raise HTTPException(
                status_code=400,
                detail=f"No card assigned for file: {original_name}. Please select a card manually.",
            )

        logger.info(
            "File card assignment",
            extra={
                "request_id": request_id,
                "file_name": original_name,
                "override_validation": override_validation,
                "detected_card_id": result.db_card_id,
                "card_id": card_id,
            },
        )
        batches.add_file(batch.id, filename=stored_name, file_path=file_path, file_size=len(data), card_id=card_id)

    if needing_approval:
        batches.mark_batch(batch, "failed", error_message=f"{len(needing_approval)} file(s) require manual card validation")
        db.commit()
        logger.warning(
            "Upload blocked for card validation",
            extra={"request_id": request_id, "batch_id": batch.id, "files": len(needing_approval)},
        )
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Card validation required",
                "batch_id": batch.id,
                "files_needing_approval": [item.model_dump(mode="json") for item in needing_approval],
            },
        )

    db.commit()
    background_tasks.add_task(run_batch, batch.id, session_factory, job_submitter, rate_client)
    logger.info("Upload accepted", extra={"request_id": request_id, "batch_id": batch.id, "files": len(contents)})

    return UploadResponse(batch_id=batch.id, status="pending", file_count=len(contents))
