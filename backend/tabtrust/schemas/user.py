"""
Pydantic schemas for User entity and trust data.
"""
from pydantic import BaseModel, EmailStr
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class UserResponse(BaseModel):
    """Schema for user response."""
    id: int
    username: str
    email: Optional[EmailStr] = None
    wallet_address: Optional[str] = None
    is_active: bool
    trust_score: int
    created_at: datetime

    class Config:
        from_attributes = True


class SettlementHistoryResponse(BaseModel):
    """Schema for one trust score change."""
    id: int
    tab_id: Optional[int] = None
    settled_on_time: bool
    days_late: int
    penalty_amount: Optional[Decimal] = None
    trust_score_before: int
    trust_score_after: int
    created_at: datetime

    class Config:
        from_attributes = True


class TrustTierResponse(BaseModel):
    tier: str
    color: str
    benefits: List[str]


class TrustScoreResponse(BaseModel):
    """Schema for a user's trust score and history."""
    user_id: int
    trust_score: int
    settlements_on_time: int
    settlements_late: int
    total_settlements: int
    tier: TrustTierResponse
    history: List[SettlementHistoryResponse]
