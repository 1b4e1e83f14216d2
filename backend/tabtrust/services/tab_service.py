"""
Tab service for tab lifecycle business logic.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tabtrust.core.config import settings
from tabtrust.core.errors import ServiceError, forbidden, internal_error, not_found, validation_error
from tabtrust.core.utils import as_utc, utcnow
from tabtrust.models.otp import OTPCode, OTPType
from tabtrust.models.tab import Tab, TabCategory, TabParticipant, TabStatus
from tabtrust.services.identity_service import IdentityStore
from tabtrust.services.notification_service import NotificationPublisher, NotificationType
from tabtrust.services.otp_service import OTPService
from tabtrust.services.share_service import ShareRequest, calculate_shares, ensure_eligible

logger = logging.getLogger(__name__)


@dataclass
class TabSummary:
    """Payment progress of a tab."""
    total_paid: Decimal
    remaining: Decimal
    all_settled: bool


def summarize(tab: Tab) -> TabSummary:
    total_paid = sum((Decimal(p.paid_amount or 0) for p in tab.participants), Decimal(0))
    shares_paid = sum((Decimal(p.share_amount) for p in tab.participants if p.paid), Decimal(0))
    return TabSummary(
        total_paid=total_paid,
        remaining=Decimal(tab.total_amount) - shares_paid,
        all_settled=all(p.paid for p in tab.participants)
    )


def otp_metadata(tab: Tab, participant: TabParticipant) -> Dict[str, object]:
    return {
        "tab_id": tab.id,
        "tab_title": tab.title,
        "share_amount": str(participant.share_amount),
        "currency": tab.currency,
        "creator_id": tab.creator_id,
    }


class TabService:
    """Creates, reads, edits and cancels tabs."""

    def __init__(self, identity: IdentityStore, otp_service: OTPService, notifier: NotificationPublisher):
        self.identity = identity
        self.otp_service = otp_service
        self.notifier = notifier

    def create_tab(
        self,
        creator_id: int,
        title: str,
        total_amount: Decimal,
        participants: Sequence[ShareRequest],
        db: Session,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[TabCategory] = None,
        settlement_deadline: Optional[datetime] = None,
        penalty_rate_bps: Optional[int] = None,
        settlement_wallet: Optional[str] = None
    ) -> Tab:
        """
        Create a tab with its participants and invite everyone but the creator.

        Tab, participant and OTP rows are written in one transaction; emails
        and notifications go out after commit and never fail the request.
        """
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        penalty_rate_bps = settings.DEFAULT_PENALTY_RATE_BPS if penalty_rate_bps is None else penalty_rate_bps
        if penalty_rate_bps < 0:
            raise validation_error("penalty rate cannot be negative")
        if settlement_deadline is not None and as_utc(settlement_deadline) <= utcnow():
            raise validation_error("settlement deadline must be in the future")

        creator = self.identity.get_user(creator_id, db)
        shares = calculate_shares(total_amount, participants, currency)
        user_ids = [s.user_id for s in shares]
        ensure_eligible(creator_id, user_ids, self.identity, db)

        invitees = {}
        for user_id in user_ids:
            if user_id == creator_id:
                continue
            user = self.identity.get_user(user_id, db)
            if not user.email:
                raise validation_error(f"Participant {user.username} has no email", user_id=user_id)
            invitees[user_id] = user

        invitations: List[Tuple[TabParticipant, OTPCode]] = []
        try:
            tab = Tab(
                creator_id=creator_id,
                title=title,
                description=description,
                category=category or TabCategory.OTHER,
                total_amount=Decimal(total_amount),
                currency=currency,
                status=TabStatus.OPEN,
                settlement_deadline=settlement_deadline,
                penalty_rate_bps=penalty_rate_bps,
                settlement_wallet=settlement_wallet,
                has_custom_shares=any(p.share_amount is not None for p in participants)
            )
            db.add(tab)
            db.flush()

            for share in shares:
                participant = TabParticipant(
                    tab_id=tab.id,
                    user_id=share.user_id,
                    share_amount=share.share_amount,
                    verified=share.user_id == creator_id,
                    paid=False
                )
                db.add(participant)
                if share.user_id in invitees:
                    otp = self.otp_service.create_otp(
                        invitees[share.user_id].email,
                        OTPType.TAB_PARTICIPATION,
                        otp_metadata(tab, participant),
                        db
                    )
                    invitations.append((participant, otp))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create tab for creator {creator_id}: {e}")
            raise internal_error("Failed to create tab")
        db.refresh(tab)

        logger.info(f"Tab {tab.id} created by {creator_id}, {len(shares)} participants, OTPs for {len(invitations)}")

        for participant, otp in invitations:
            try:
                self.otp_service.send_otp(otp)
            except ServiceError:
                logger.error(f"Failed to send tab {tab.id} invitation to user {participant.user_id}")
            self._notify(
                participant.user_id,
                NotificationType.TAB_CREATED,
                "New Tab Created",
                f"{creator.username} created \"{title}\" - You owe {currency} {participant.share_amount}",
                {"tabId": tab.id, "creatorId": creator_id, "shareAmount": str(participant.share_amount)}
            )

        return tab

    def get_tab(self, user_id: int, tab_id: int, db: Session) -> Tab:
        """Tab visible to its creator and participants only."""
        tab = db.query(Tab).filter(Tab.id == tab_id).first()
        if not tab:
            raise not_found("Tab", tab_id=tab_id)
        if tab.creator_id != user_id and not any(p.user_id == user_id for p in tab.participants):
            raise forbidden("You are not a participant in this tab")
        return tab

    def get_user_tabs(
        self,
        user_id: int,
        db: Session,
        status: Optional[TabStatus] = None,
        category: Optional[TabCategory] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Tuple[Tab, Optional[TabParticipant]]], int]:
        """Tabs the user created or participates in, newest first, with the user's row."""
        query = db.query(Tab, TabParticipant).outerjoin(
            TabParticipant,
            and_(TabParticipant.tab_id == Tab.id, TabParticipant.user_id == user_id)
        ).filter(
            or_(Tab.creator_id == user_id, TabParticipant.id.isnot(None))
        )
        if status:
            query = query.filter(Tab.status == status)
        if category:
            query = query.filter(Tab.category == category)
        if search:
            query = query.filter(Tab.title.ilike(f"%{search}%"))

        total = query.count()
        rows = query.order_by(Tab.created_at.desc(), Tab.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return [(tab, participant) for tab, participant in rows], total

    def update_tab(
        self,
        user_id: int,
        tab_id: int,
        db: Session,
        title: Optional[str] = None,
        description: Optional[str] = None
    ) -> Tab:
        tab = self._get_own_open_tab(user_id, tab_id, db, action="update")
        if title is not None:
            tab.title = title
        if description is not None:
            tab.description = description
        db.commit()
        db.refresh(tab)
        return tab

    def cancel_tab(self, user_id: int, tab_id: int, db: Session) -> Tab:
        """Creator-only OPEN -> CANCELLED."""
        tab = self._get_own_open_tab(user_id, tab_id, db, action="cancel")

        result = db.execute(
            update(Tab)
            .where(Tab.id == tab_id, Tab.status == TabStatus.OPEN)
            .values(status=TabStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise validation_error("Cannot cancel a settled or already cancelled tab")
        db.commit()
        db.refresh(tab)
        logger.info(f"Tab {tab_id} cancelled by {user_id}")

        for p in tab.participants:
            if p.user_id == user_id:
                continue
            self._notify(
                p.user_id,
                NotificationType.TAB_UPDATED,
                "Tab Cancelled",
                f"\"{tab.title}\" has been cancelled",
                {"tabId": tab_id, "status": TabStatus.CANCELLED.value}
            )
        return tab

    def resend_otp(self, user_id: int, tab_id: int, db: Session) -> None:
        """Send a fresh participation code to an unverified participant."""
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
        if user_id == tab.creator_id or participant.verified:
            raise validation_error("participation already verified")

        user = self.identity.get_user(user_id, db)
        if not user.email:
            raise validation_error("email required for verification")

        self.otp_service.create_and_send_otp(
            user.email, OTPType.TAB_PARTICIPATION, otp_metadata(tab, participant), db
        )
        logger.info(f"Tab {tab_id} OTP resent to user {user_id}")

    def _get_own_open_tab(self, user_id: int, tab_id: int, db: Session, action: str) -> Tab:
        tab = db.query(Tab).filter(Tab.id == tab_id).first()
        if not tab:
            raise not_found("Tab", tab_id=tab_id)
        if tab.creator_id != user_id:
            raise forbidden(f"Only the creator can {action} this tab")
        if tab.status != TabStatus.OPEN:
            raise validation_error(f"Cannot {action} a settled or cancelled tab")
        return tab

    def _notify(self, user_id: int, type: NotificationType, title: str, body: str, data: dict) -> None:
        try:
            self.notifier.publish(user_id, type, title, body, data)
        except Exception:
            logger.exception(f"Notification {type.value} to user {user_id} failed")
