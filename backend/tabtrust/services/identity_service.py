"""
Identity store adapter over the users and friendships tables.
"""
from typing import Optional
from sqlalchemy.orm import Session
from tabtrust.core.errors import not_found
from tabtrust.models.user import User, Friendship, FriendshipStatus


class IdentityStore:
    """Read-only access to users and the friend graph."""

    def get_user(self, user_id: int, db: Session) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise not_found("User", user_id=user_id)
        return user

    def get_friendship_status(self, user_id: int, other_id: int, db: Session) -> Optional[FriendshipStatus]:
        """Status of the user_id -> other_id edge, or None when absent."""
        friendship = db.query(Friendship).filter(
            Friendship.user_id == user_id,
            Friendship.friend_id == other_id
        ).first()
        return friendship.status if friendship else None

    def is_friend(self, user_id: int, other_id: int, db: Session) -> bool:
        return self.get_friendship_status(user_id, other_id, db) == FriendshipStatus.ACCEPTED
