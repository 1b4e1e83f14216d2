"""
User and friendship models.

Users and the friend graph are owned by the user service; this service
reads them and maintains the trust fields.
"""
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import relationship
from tabtrust.db.base import BaseModel
import enum

DEFAULT_TRUST_SCORE = 100


class FriendshipStatus(str, enum.Enum):
    """Friendship status enumeration."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    BLOCKED = "BLOCKED"


class User(BaseModel):
    """User model with wallet address and trust counters."""
    __tablename__ = "users"

    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=True, index=True)
    wallet_address = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Trust fields, written only by the trust score engine
    trust_score = Column(Integer, default=DEFAULT_TRUST_SCORE, nullable=False)
    settlements_on_time = Column(Integer, default=0, nullable=False)
    settlements_late = Column(Integer, default=0, nullable=False)
    total_settlements = Column(Integer, default=0, nullable=False)

    # Relationships
    tabs = relationship("TabParticipant", back_populates="user")
    settlement_history = relationship("SettlementHistory", back_populates="user", order_by="SettlementHistory.id")


class Friendship(BaseModel):
    """Directed friendship edge (user_id -> friend_id)."""
    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("user_id", "friend_id", name="uq_friendship_pair"),)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    friend_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(FriendshipStatus), default=FriendshipStatus.PENDING, nullable=False)
