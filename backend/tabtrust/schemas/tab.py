"""
Pydantic schemas for Tab entity.
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from tabtrust.models.tab import TabCategory, TabStatus

TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
OTP_PATTERN = r"^\d{6}$"


class ParticipantShareIn(BaseModel):
    """A participant and optional custom share."""
    user_id: int
    share_amount: Optional[Decimal] = None  # Omit on every participant for an even split


class TabCreate(BaseModel):
    """Schema for tab creation."""
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[TabCategory] = None
    total_amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=1, max_length=10)
    participants: List[ParticipantShareIn] = Field(..., min_length=1)
    settlement_deadline: Optional[datetime] = None
    penalty_rate_bps: Optional[int] = Field(None, ge=0, le=10000)
    settlement_wallet: Optional[str] = Field(None, max_length=100)


class TabUpdate(BaseModel):
    """Schema for tab update (creator only)."""
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)


class TabParticipantResponse(BaseModel):
    """Schema for a participant row."""
    id: int
    user_id: int
    share_amount: Decimal
    verified: bool
    paid: bool
    paid_amount: Optional[Decimal] = None
    paid_tx_hash: Optional[str] = None
    paid_at: Optional[datetime] = None
    days_late: int
    penalty_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None

    class Config:
        from_attributes = True


class TabResponse(BaseModel):
    """Schema for tab response."""
    id: int
    creator_id: int
    title: str
    description: Optional[str] = None
    category: TabCategory
    total_amount: Decimal
    currency: str
    status: TabStatus
    settlement_deadline: Optional[datetime] = None
    penalty_rate_bps: int
    settlement_wallet: Optional[str] = None
    created_at: datetime
    participants: List[TabParticipantResponse] = []

    class Config:
        from_attributes = True


class TabSummaryResponse(BaseModel):
    """Payment progress of a tab."""
    total_paid: Decimal
    remaining: Decimal
    all_settled: bool


class TabDetailResponse(TabResponse):
    """Tab with payment summary."""
    summary: TabSummaryResponse


class TabListItem(TabResponse):
    """Tab in a list, with the requesting user's own row if any."""
    my_participation: Optional[TabParticipantResponse] = None


class TabListResponse(BaseModel):
    """Paginated tab list."""
    items: List[TabListItem]
    total: int
    page: int
    limit: int


class SettlePaymentRequest(BaseModel):
    """Schema for settling a share with a ledger transaction."""
    tx_hash: str = Field(..., pattern=TX_HASH_PATTERN)
    amount: Decimal = Field(..., gt=0)


class ParticipationVerifyRequest(BaseModel):
    """Schema for accepting or declining a tab invitation."""
    otp_code: str = Field(..., pattern=OTP_PATTERN)
    accept: bool
