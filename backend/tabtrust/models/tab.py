"""
Tab model for shared expenses.
"""
from sqlalchemy import (
    Column, String, Text, Numeric, Boolean, DateTime, Integer, ForeignKey,
    Enum as SQLEnum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from tabtrust.db.base import BaseModel
import enum


class TabStatus(str, enum.Enum):
    """Tab status enumeration. SETTLED and CANCELLED are terminal."""
    OPEN = "OPEN"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


class TabCategory(str, enum.Enum):
    """What a tab was spent on."""
    DINING = "DINING"
    TRAVEL = "TRAVEL"
    GROCERIES = "GROCERIES"
    ENTERTAINMENT = "ENTERTAINMENT"
    UTILITIES = "UTILITIES"
    GIFTS = "GIFTS"
    TRANSPORTATION = "TRANSPORTATION"
    ACCOMMODATION = "ACCOMMODATION"
    OTHER = "OTHER"


class Tab(BaseModel):
    """Tab model representing a shared expense split among participants."""
    __tablename__ = "tabs"

    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(SQLEnum(TabCategory), default=TabCategory.OTHER, nullable=False, index=True)
    total_amount = Column(Numeric(20, 8), nullable=False)
    currency = Column(String(10), nullable=False, default="USDC")
    status = Column(SQLEnum(TabStatus), default=TabStatus.OPEN, nullable=False, index=True)
    settlement_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    penalty_rate_bps = Column(Integer, nullable=False, default=0)  # 500 = 5%
    settlement_wallet = Column(String(100), nullable=True)
    has_custom_shares = Column(Boolean, default=False, nullable=False)
    last_overdue_notice_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id])
    participants = relationship(
        "TabParticipant", back_populates="tab", cascade="all, delete-orphan", order_by="TabParticipant.id"
    )


class TabParticipant(BaseModel):
    """A user's share of a tab and its payment state."""
    __tablename__ = "tab_participants"
    __table_args__ = (UniqueConstraint("tab_id", "user_id", name="uq_tab_participant"),)

    tab_id = Column(Integer, ForeignKey("tabs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    share_amount = Column(Numeric(20, 8), nullable=False)
    verified = Column(Boolean, default=False, nullable=False)

    # Payment (paid only ever goes false -> true)
    paid = Column(Boolean, default=False, nullable=False)
    paid_amount = Column(Numeric(20, 8), nullable=True)
    paid_tx_hash = Column(String(100), nullable=True, unique=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    days_late = Column(Integer, default=0, nullable=False)
    penalty_amount = Column(Numeric(20, 8), nullable=True)
    final_amount = Column(Numeric(20, 8), nullable=True)
    trust_score_applied = Column(Boolean, default=False, nullable=False)

    # Reminder tracking
    last_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_count = Column(Integer, default=0, nullable=False)

    # Relationships
    tab = relationship("Tab", back_populates="participants")
    user = relationship("User", back_populates="tabs")
