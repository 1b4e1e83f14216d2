"""
Trust score engine.

A user's trust score is derived from their settlement counters:

    score = clamp(100 - 10 * late + min(floor(on_time / 10) * 5, 50), 0, 150)

Every settlement updates the counters and the score and appends one
SettlementHistory row, all in one transaction.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabtrust.core.config import settings
from tabtrust.core.errors import internal_error
from tabtrust.core.utils import utcnow
from tabtrust.models.settlement import SettlementHistory
from tabtrust.models.tab import TabParticipant
from tabtrust.models.user import User

logger = logging.getLogger(__name__)

BASE_SCORE = 100
LATE_PENALTY = 10
ON_TIME_STEP = 10
ON_TIME_BONUS = 5
MAX_ON_TIME_BONUS = 50
MIN_SCORE = 0
MAX_SCORE = 150

# (tier, minimum score, color, benefits), highest first
TRUST_TIERS = [
    ("Excellent", 120, "#10b981", ["Lower penalty rates", "Priority support", "Extended deadlines"]),
    ("Good", 100, "#3b82f6", ["Standard rates", "Normal deadlines"]),
    ("Fair", 70, "#f59e0b", ["Standard rates", "Payment reminders"]),
    ("Poor", MIN_SCORE, "#ef4444", ["Higher penalty rates", "Stricter deadlines"]),
]


@dataclass
class TrustStats:
    """Cumulative settlement counters for a user."""
    settlements_on_time: int = 0
    settlements_late: int = 0
    total_settlements: int = 0


def score(stats: TrustStats) -> int:
    """Compute a trust score from settlement counters."""
    late_penalty = stats.settlements_late * LATE_PENALTY
    on_time_bonus = min((stats.settlements_on_time // ON_TIME_STEP) * ON_TIME_BONUS, MAX_ON_TIME_BONUS)
    return max(MIN_SCORE, min(MAX_SCORE, BASE_SCORE - late_penalty + on_time_bonus))


def get_trust_tier(trust_score: int) -> Dict[str, object]:
    """Tier name, display color and benefits for a score."""
    for tier, minimum, color, benefits in TRUST_TIERS:
        if trust_score >= minimum:
            return {"tier": tier, "color": color, "benefits": list(benefits)}
    tier, _, color, benefits = TRUST_TIERS[-1]
    return {"tier": tier, "color": color, "benefits": list(benefits)}


class TrustScoreEngine:
    """Applies settlements to users' trust scores."""

    def update_trust_score(self, participant_id: int, db: Session) -> Optional[SettlementHistory]:
        """
        Apply the settlement recorded on a paid participant row.

        Claims the row's ``trust_score_applied`` flag first, so applying the
        same settlement twice is a no-op that returns None. The counter
        increment takes the user row's write lock, which serialises
        concurrent updates for the same user until commit.
        """
        try:
            claimed = db.execute(
                update(TabParticipant)
                .where(
                    TabParticipant.id == participant_id,
                    TabParticipant.paid == True,  # noqa: E712
                    TabParticipant.trust_score_applied == False  # noqa: E712
                )
                .values(trust_score_applied=True)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                logger.info(f"Trust score already applied for participant {participant_id}")
                return None

            participant = db.query(TabParticipant).filter(
                TabParticipant.id == participant_id
            ).populate_existing().one()
            on_time = participant.days_late == 0

            db.execute(
                update(User)
                .where(User.id == participant.user_id)
                .values(
                    total_settlements=User.total_settlements + 1,
                    settlements_on_time=User.settlements_on_time + (1 if on_time else 0),
                    settlements_late=User.settlements_late + (0 if on_time else 1),
                )
                .execution_options(synchronize_session=False)
            )
            user = db.query(User).filter(User.id == participant.user_id).populate_existing().one()

            score_before = user.trust_score
            score_after = score(TrustStats(
                settlements_on_time=user.settlements_on_time,
                settlements_late=user.settlements_late,
                total_settlements=user.total_settlements,
            ))
            user.trust_score = score_after

            history = SettlementHistory(
                user_id=user.id,
                tab_id=participant.tab_id,
                settled_on_time=on_time,
                days_late=participant.days_late,
                penalty_amount=participant.penalty_amount,
                trust_score_before=score_before,
                trust_score_after=score_after
            )
            db.add(history)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Trust score update failed for participant {participant_id}: {e}")
            raise internal_error("Failed to update trust score")

        logger.info(
            f"Trust score updated for user {history.user_id}: {score_before} -> {score_after} "
            f"(on_time={on_time}, days_late={participant.days_late}, tab={participant.tab_id})"
        )
        return history

    def reconcile_pending_trust_updates(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Apply trust updates for settlements whose update never completed.

        Only payments older than the grace period are picked up, so requests
        still in flight are left alone. Returns the number applied.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=settings.TRUST_RECONCILE_GRACE_MINUTES)
        pending_ids: List[int] = [
            row.id for row in db.query(TabParticipant.id).filter(
                TabParticipant.paid == True,  # noqa: E712
                TabParticipant.trust_score_applied == False,  # noqa: E712
                TabParticipant.paid_at < cutoff
            ).all()
        ]
        db.rollback()

        applied = 0
        for participant_id in pending_ids:
            try:
                if self.update_trust_score(participant_id, db):
                    applied += 1
            except Exception:
                logger.exception(f"Reconciling trust score for participant {participant_id} failed")
        if pending_ids:
            logger.warning(f"Reconciled {applied} of {len(pending_ids)} pending trust score updates")
        return applied

    def get_history(self, user_id: int, db: Session) -> List[SettlementHistory]:
        return db.query(SettlementHistory).filter(
            SettlementHistory.user_id == user_id
        ).order_by(SettlementHistory.id.desc()).all()
