"""
One-time verification code model.
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON, Enum as SQLEnum
from tabtrust.db.base import BaseModel
import enum


class OTPType(str, enum.Enum):
    """OTP purpose enumeration."""
    TAB_PARTICIPATION = "TAB_PARTICIPATION"


class OTPCode(BaseModel):
    """OTP code scoped to an email and purpose; consumed once."""
    __tablename__ = "otp_codes"

    email = Column(String(100), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    type = Column(SQLEnum(OTPType), nullable=False)
    otp_metadata = Column("metadata", JSON, nullable=True)  # tab_id, share_amount, ...
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
