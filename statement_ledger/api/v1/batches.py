"""GET /v1/batches/{batch_id} - upload batch progress and summary"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from statement_ledger.api.v1.schemas import BatchResponse
from statement_ledger.infrastructure.database.session import get_db
from statement_ledger.infrastructure.database.repositories import BatchRepository

router = APIRouter()


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a batch with the processing state of each of its files.

    Counts and the total are filled in once processing completes; a duplicate
    notice may appear in error_message while the status is still completed.
    """
    batch = BatchRepository(db).get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
    return BatchResponse.model_validate(batch)
