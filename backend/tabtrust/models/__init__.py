"""Models package - Import all models for SQLAlchemy registration."""
from tabtrust.models.user import User, Friendship, FriendshipStatus
from tabtrust.models.tab import Tab, TabParticipant, TabStatus
from tabtrust.models.settlement import SettlementHistory
from tabtrust.models.otp import OTPCode, OTPType

__all__ = [
    "User",
    "Friendship",
    "FriendshipStatus",
    "Tab",
    "TabParticipant",
    "TabStatus",
    "SettlementHistory",
    "OTPCode",
    "OTPType",
]
