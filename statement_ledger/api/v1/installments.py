"""GET /v1/installments/{group_id} - payment rows of one installment plan"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from statement_ledger.api.v1.schemas import InstallmentGroupResponse, InstallmentRowSchema
from statement_ledger.infrastructure.database.session import get_db
from statement_ledger.infrastructure.database.repositories import TransactionRepository

router = APIRouter()


@router.get("/installments/{group_id}", response_model=InstallmentGroupResponse)
def get_installment_group(group_id: str, db: Session = Depends(get_db)):
    rows = TransactionRepository(db).list_group(group_id)
    if not rows:
        raise HTTPException(status_code=404, detail=f"Installment group {group_id} not found")

    first = rows[0]
    return InstallmentGroupResponse(
        group_id=group_id,
        base_group_id=first.installment_base_group_id,
        business_id=first.business_id,
        card_id=first.card_id,
        deal_date=first.deal_date,
        original_amount=first.original_amount,
        payments=[InstallmentRowSchema.model_validate(row) for row in rows],
    )
