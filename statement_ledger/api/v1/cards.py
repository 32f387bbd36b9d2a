"""Card registry endpoints: list, register and detect-only"""

import logging
import os
import tempfile
from typing import List
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from statement_ledger.api.v1.schemas import CardCreateRequest, CardResponse, DetectionResponse
from statement_ledger.infrastructure.database.session import get_db
from statement_ledger.infrastructure.database.repositories import CardRepository
from statement_ledger.services.card_detection import CardDetectionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/cards", response_model=List[CardResponse])
def list_cards(owner: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return [CardResponse.model_validate(card) for card in CardRepository(db).list_by_owner(owner)]


@router.post("/cards", response_model=CardResponse, status_code=201)
def create_card(request_body: CardCreateRequest, db: Session = Depends(get_db)):
    """
    Register a card, typically one reported as NEW_CARD by detection.

    Returns 409 when the owner already has an active card with these digits.
    """
    service = CardDetectionService(db)
    if service.find_card_in_db(request_body.last4, request_body.owner) is not None:
        raise HTTPException(status_code=409, detail=f"Card ending in {request_body.last4} already registered")

    card = service.create_card(
        owner=request_body.owner,
        last4=request_body.last4,
        issuer=request_body.issuer,
        nickname=request_body.nickname,
        bank_or_company=request_body.bank_or_company,
    )
    db.commit()
    logger.info("Card registered", extra={"card_id": card.id, "issuer": request_body.issuer.value})
    return CardResponse.model_validate(card)


@router.post("/cards/detect", response_model=DetectionResponse)
async def detect_card(
    file: UploadFile = File(...),
    owner: str = Form(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Run card detection on a statement without storing it"""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f'File "{file.filename}" is empty')

    _, extension = os.path.splitext(file.filename or "")
    with tempfile.TemporaryDirectory() as tmp_dir:
        file_path = os.path.join(tmp_dir, f"statement{extension}")
        with open(file_path, "wb") as f:
            f.write(data)
        result = CardDetectionService(db).detect_card(owner, file_path, file.filename or "")

    return DetectionResponse.from_result(file.filename or "", result)
