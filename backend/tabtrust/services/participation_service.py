"""
Participation verifier: OTP-gated accept/decline of a tab invitation.
"""
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabtrust.core.errors import ServiceError, internal_error, not_found, validation_error
from tabtrust.models.otp import OTPType
from tabtrust.models.tab import Tab, TabParticipant, TabStatus
from tabtrust.services.identity_service import IdentityStore
from tabtrust.services.notification_service import NotificationPublisher, NotificationType
from tabtrust.services.otp_service import OTPService
from tabtrust.services.settlement_service import try_mark_settled
from tabtrust.services.share_service import allocate_even

logger = logging.getLogger(__name__)


def recalculate_shares(tab: Tab, declined_share: Decimal, db: Session) -> None:
    """
    Restore sum(shares) == total after a participant left. Does not commit.

    Even-split tabs re-split what is still owed over the unpaid
    participants; shares already paid stay untouched. Custom-share tabs
    keep the remaining shares and lower the total by the declined share.
    A tab left without participants is cancelled.
    """
    remaining = db.query(TabParticipant).filter(
        TabParticipant.tab_id == tab.id
    ).order_by(TabParticipant.id).all()

    if not remaining:
        # Nobody left to owe anything
        tab.status = TabStatus.CANCELLED
        return

    if tab.has_custom_shares:
        tab.total_amount = Decimal(tab.total_amount) - Decimal(declined_share)
        return

    paid_sum = sum((Decimal(p.share_amount) for p in remaining if p.paid), Decimal(0))
    unpaid = [p for p in remaining if not p.paid]
    if not unpaid:
        tab.total_amount = paid_sum
        return

    allocations = allocate_even(Decimal(tab.total_amount) - paid_sum, [p.user_id for p in unpaid], tab.currency)
    shares = {a.user_id: a.share_amount for a in allocations}
    for p in unpaid:
        p.share_amount = shares[p.user_id]


class ParticipationVerifier:
    """Accepts or declines tab participation with a one-time code."""

    def __init__(self, otp_service: OTPService, identity: IdentityStore, notifier: NotificationPublisher):
        self.otp_service = otp_service
        self.identity = identity
        self.notifier = notifier

    def verify_participation(
        self, user_id: int, tab_id: int, otp_code: str, accept: bool, db: Session
    ) -> Optional[TabParticipant]:
        """
        Accept (returns the verified participant) or decline (returns None).

        The code is consumed in the same transaction as the accept/decline
        write, so a failed decline leaves the code usable.
        """
        tab = db.query(Tab).filter(Tab.id == tab_id).first()
        if not tab:
            raise not_found("Tab", tab_id=tab_id)
        participant = db.query(TabParticipant).filter(
            TabParticipant.tab_id == tab_id,
            TabParticipant.user_id == user_id
        ).first()
        if not participant:
            raise not_found("Tab participant", tab_id=tab_id, user_id=user_id)
        if tab.status != TabStatus.OPEN:
            raise validation_error("tab is not open", status=tab.status.value)
        if user_id == tab.creator_id:
            raise validation_error("the creator's participation does not need verification")
        if participant.verified:
            raise validation_error("participation already verified")

        user = self.identity.get_user(user_id, db)
        if not user.email:
            raise validation_error("email required for verification")

        otp = self.otp_service.find_valid_otp(user.email, otp_code, OTPType.TAB_PARTICIPATION, db)
        if not otp:
            logger.warning(f"Invalid OTP for tab {tab_id}, user {user_id}")
            raise validation_error("invalid or expired OTP")
        if str((otp.otp_metadata or {}).get("tab_id")) != str(tab_id):
            raise validation_error("OTP does not match this tab")

        try:
            if not self.otp_service.consume_otp(otp, db):
                db.rollback()
                raise validation_error("invalid or expired OTP")

            if accept:
                participant.verified = True
                db.commit()
                logger.info(f"Tab participation accepted: tab {tab_id}, user {user_id}")
                return participant

            declined_share = Decimal(participant.share_amount)
            removed = db.execute(
                delete(TabParticipant)
                .where(TabParticipant.id == participant.id, TabParticipant.paid == False)  # noqa: E712
                .execution_options(synchronize_session=False)
            )
            if removed.rowcount != 1:
                db.rollback()
                raise validation_error("cannot decline after paying")
            db.expunge(participant)
            db.expire(tab, ["participants"])
            recalculate_shares(tab, declined_share, db)
            db.commit()
        except ServiceError:
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Participation update failed for tab {tab_id}, user {user_id}: {e}")
            raise internal_error("Failed to update participation")

        logger.info(f"Tab participation declined: tab {tab_id}, user {user_id}")

        try:
            self.notifier.publish(
                tab.creator_id,
                NotificationType.TAB_UPDATED,
                "Participant Declined",
                f"{user.username} declined \"{tab.title}\"; shares were updated",
                {"tabId": tab_id, "userId": user_id}
            )
        except Exception:
            logger.exception(f"Decline notification for tab {tab_id} failed")

        try:
            if try_mark_settled(tab_id, db):
                logger.info(f"Tab {tab_id} settled after last unpaid participant declined")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"All-paid check failed for tab {tab_id}: {e}")
        return None
