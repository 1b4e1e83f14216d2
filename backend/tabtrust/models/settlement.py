"""
Settlement history model backing trust score changes.
"""
from sqlalchemy import Column, Boolean, Numeric, ForeignKey, Integer
from sqlalchemy.orm import relationship
from tabtrust.db.base import BaseModel


class SettlementHistory(BaseModel):
    """Append-only record of one settlement and its trust score change."""
    __tablename__ = "settlement_history"

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tab_id = Column(Integer, ForeignKey("tabs.id"), nullable=True, index=True)
    settled_on_time = Column(Boolean, nullable=False)
    days_late = Column(Integer, default=0, nullable=False)
    penalty_amount = Column(Numeric(20, 8), nullable=True)
    trust_score_before = Column(Integer, nullable=False)
    trust_score_after = Column(Integer, nullable=False)

    # Relationships
    user = relationship("User", back_populates="settlement_history")
