"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from statement_ledger.domain.models import CardDetectionResult, CardInfo, DetectionStatus, DetectionTier, Issuer


class CardMapping(BaseModel):
    """User-selected card for one uploaded file"""

    filename: str = Field(..., min_length=1)
    card_id: Optional[int] = Field(None, gt=0)


class CardInfoSchema(BaseModel):
    last4: str
    issuer: Issuer


class DetectionResponse(BaseModel):
    """Card detection outcome for one file"""

    filename: str
    status: DetectionStatus
    tier: DetectionTier
    needs_user_confirmation: bool
    message: str
    card: Optional[CardInfoSchema] = None
    db_card_id: Optional[int] = None
    clash_details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(cls, filename: str, result: CardDetectionResult) -> "DetectionResponse":
        clash_details = None
        if result.clash_details:
            # Evidence entries are CardInfo values; the stored card is already a dict
            clash_details = {
                key: {"last4": value.last4, "issuer": value.issuer.value} if isinstance(value, CardInfo) else value
                for key, value in result.clash_details.items()
            }
        return cls(
            filename=filename,
            status=result.status,
            tier=result.tier,
            needs_user_confirmation=result.needs_user_confirmation,
            message=result.message,
            card=CardInfoSchema(last4=result.card_info.last4, issuer=result.card_info.issuer) if result.card_info else None,
            db_card_id=result.db_card_id,
            clash_details=clash_details,
        )


class UploadResponse(BaseModel):
    """Response for an accepted POST /v1/uploads"""

    batch_id: int
    status: str
    file_count: int


class CardCreateRequest(BaseModel):
    """Request body for POST /v1/cards"""

    owner: str = Field(..., min_length=1)
    last4: str = Field(..., pattern=r"^\d{4}$")
    issuer: Issuer
    nickname: Optional[str] = None
    bank_or_company: Optional[str] = None


class CardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner: str
    last4_digits: str
    file_format_handler: Optional[str]
    nickname: Optional[str] = None
    bank_or_company: Optional[str] = None
    is_active: bool


class UploadedFileSchema(BaseModel):
    """Processing state of one file in a batch"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    card_id: Optional[int]
    status: str
    transactions_found: Optional[int] = None
    error_message: Optional[str] = None
    validation_warning: Optional[str] = None


class BatchResponse(BaseModel):
    """Response for GET /v1/batches/{batch_id}"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    file_count: int
    total_transactions: Optional[int] = None
    new_transactions: Optional[int] = None
    updated_transactions: Optional[int] = None
    duplicate_transactions: Optional[int] = None
    total_amount_ils: Optional[float] = None
    error_message: Optional[str] = None
    uploaded_at: datetime
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    files: List[UploadedFileSchema]


class InstallmentRowSchema(BaseModel):
    """Single payment row of an installment plan"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    installment_index: int
    installment_total: int
    charged_amount_ils: float
    status: str
    is_backfilled: bool
    projected_charge_date: Optional[date] = None
    actual_charge_date: Optional[date] = None
    source_file: Optional[str] = None


class InstallmentGroupResponse(BaseModel):
    """Response for GET /v1/installments/{group_id}"""

    group_id: str
    base_group_id: Optional[str]
    business_id: int
    card_id: int
    deal_date: date
    original_amount: float
    payments: List[InstallmentRowSchema]
