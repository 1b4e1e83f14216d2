"""
Settlement processor: verifies a participant's payment and records it.

A settlement is checked in full (state, penalty, ledger transfer) before
anything is written. The write itself is a conditional UPDATE on
``paid = false`` so concurrent requests for the same participant cannot
both succeed, and the tab's OPEN -> SETTLED transition is a conditional
UPDATE guarded by "no unpaid participant left".
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tabtrust.core.config import settings
from tabtrust.core.errors import ServiceError, internal_error, not_found, validation_error
from tabtrust.core.utils import as_utc, days_between, quantize_amount, utcnow
from tabtrust.models.tab import Tab, TabParticipant, TabStatus
from tabtrust.services.identity_service import IdentityStore
from tabtrust.services.ledger_service import LedgerTransaction, LedgerVerifier, to_currency_amount
from tabtrust.services.notification_service import NotificationPublisher, NotificationType
from tabtrust.services.trust_service import TrustScoreEngine

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = Decimal(10000)


@dataclass
class PenaltyAssessment:
    """What a participant owes at a point in time."""
    days_late: int
    penalty_amount: Decimal
    final_amount: Decimal


def compute_penalty(
    share_amount: Decimal,
    penalty_rate_bps: int,
    deadline: Optional[datetime],
    now: datetime,
    currency: str
) -> PenaltyAssessment:
    """
    Flat late-payment surcharge.

    Past the deadline, days_late = ceil(elapsed / 1 day) and the penalty is
    share * bps / 10000 once, regardless of how many days late.
    """
    share_amount = Decimal(share_amount)
    days_late = 0
    penalty = Decimal(0)
    if deadline is not None and now > as_utc(deadline):
        days_late = days_between(now, deadline)
        if penalty_rate_bps > 0:
            penalty = quantize_amount(share_amount * penalty_rate_bps / BPS_DENOMINATOR, currency)
    return PenaltyAssessment(
        days_late=days_late,
        penalty_amount=penalty,
        final_amount=share_amount + penalty
    )


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def try_mark_settled(tab_id: int, db: Session) -> bool:
    """
    Move an OPEN tab to SETTLED if no participant is left unpaid.

    Returns True only for the caller whose UPDATE performed the transition.
    Commits.
    """
    unpaid = select(TabParticipant.id).where(
        TabParticipant.tab_id == tab_id,
        TabParticipant.paid == False  # noqa: E712
    ).exists()
    result = db.execute(
        update(Tab)
        .where(Tab.id == tab_id, Tab.status == TabStatus.OPEN, ~unpaid)
        .values(status=TabStatus.SETTLED)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


class SettlementProcessor:
    """Validates and records participant payments."""

    def __init__(
        self,
        ledger: LedgerVerifier,
        trust: TrustScoreEngine,
        identity: IdentityStore,
        notifier: NotificationPublisher
    ):
        self.ledger = ledger
        self.trust = trust
        self.identity = identity
        self.notifier = notifier

    def settle(
        self,
        tab_id: int,
        user_id: int,
        tx_hash: str,
        amount: Decimal,
        db: Session,
        now: Optional[datetime] = None
    ) -> TabParticipant:
        """Settle a participant's share of a tab with a ledger transaction."""
        now = now or utcnow()
        amount = Decimal(amount)

        participant = db.query(TabParticipant).filter(
            TabParticipant.tab_id == tab_id,
            TabParticipant.user_id == user_id
        ).first()
        if not participant:
            raise not_found("Tab participant", tab_id=tab_id, user_id=user_id)
        if participant.paid:
            raise validation_error("already settled")

        tab = participant.tab
        if tab.status != TabStatus.OPEN:
            raise validation_error("tab is not open", status=tab.status.value)

        assessment = compute_penalty(
            participant.share_amount, tab.penalty_rate_bps, tab.settlement_deadline, now, tab.currency
        )
        if amount < assessment.final_amount:
            raise validation_error(
                f"insufficient payment: required {assessment.final_amount} {tab.currency}, received {amount}",
                required=str(assessment.final_amount),
                received=str(amount),
                penalty=str(assessment.penalty_amount),
            )

        payer = self.identity.get_user(user_id, db)
        self._check_transaction(tab, participant, payer.wallet_address, tx_hash, db)

        try:
            self._record_payment(participant, tx_hash, amount, assessment, now, db)
        except ServiceError:
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record payment for tab {tab_id}, user {user_id}: {e}")
            raise internal_error("Failed to record payment")
        db.refresh(participant)

        logger.info(
            f"Payment settled: tab {tab_id}, user {user_id}, amount {amount}, tx {tx_hash}, "
            f"days_late {assessment.days_late}, penalty {assessment.penalty_amount}"
        )

        # The settlement stands even if the trust update fails; the paid row
        # with trust_score_applied = false is picked up by reconciliation.
        try:
            self.trust.update_trust_score(participant.id, db)
        except Exception:
            logger.exception(
                f"RECONCILIATION REQUIRED: trust score not updated for user {user_id} "
                f"after settling tab {tab_id} (participant {participant.id})"
            )

        if tab.creator_id != user_id:
            self._notify(
                tab.creator_id,
                NotificationType.PAYMENT_RECEIVED,
                "Payment Received",
                f"{payer.username} paid {tab.currency} {amount} for \"{tab.title}\"",
                {"tabId": tab_id, "fromUserId": user_id, "amount": str(amount), "txHash": tx_hash}
            )

        try:
            settled = try_mark_settled(tab_id, db)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"All-paid check failed for tab {tab_id}: {e}")
            settled = False
        if settled:
            logger.info(f"Tab {tab_id} fully settled")
            db.refresh(tab)
            for p in tab.participants:
                self._notify(
                    p.user_id,
                    NotificationType.TAB_SETTLED,
                    "Tab Settled",
                    f"\"{tab.title}\" has been fully settled!",
                    {"tabId": tab_id}
                )

        return participant

    def _check_transaction(
        self, tab: Tab, participant: TabParticipant, payer_wallet: Optional[str], tx_hash: str, db: Session
    ) -> LedgerTransaction:
        """Cross-check the claimed transaction against the ledger. Writes nothing."""
        if not payer_wallet:
            raise validation_error("payer has no registered wallet address")

        recipient = tab.settlement_wallet or settings.SETTLEMENT_ADDRESS
        if not recipient:
            logger.error(f"No settlement address for tab {tab.id} and SETTLEMENT_ADDRESS is unset")
            raise internal_error("Settlement address is not configured")

        reused = db.query(TabParticipant.id).filter(TabParticipant.paid_tx_hash == tx_hash).first()
        if reused:
            raise validation_error("transaction already used for another settlement", tx_hash=tx_hash)

        tx = self.ledger.verify_transaction(tx_hash)
        if not tx.confirmed:
            raise validation_error("transaction not confirmed on the ledger", tx_hash=tx_hash)
        if tx.amount is None:
            raise validation_error("transaction is not a transfer", tx_hash=tx_hash)

        transferred = to_currency_amount(tx.amount, tab.currency)
        expected = quantize_amount(participant.share_amount, tab.currency)
        if transferred != expected:
            raise validation_error(
                f"transaction amount mismatch: expected {expected} {tab.currency}, transferred {transferred}",
                expected=str(expected),
                transferred=str(transferred),
            )

        if not _same_address(tx.from_address, payer_wallet):
            raise validation_error(
                "transaction sender does not match the payer's wallet",
                sender=tx.from_address,
            )
        if not _same_address(tx.to_address, recipient):
            raise validation_error(
                "transaction recipient does not match the settlement address",
                recipient=tx.to_address,
            )

        expected_asset = settings.LEDGER_ASSETS.get(tab.currency.upper())
        if expected_asset and not _same_address(tx.asset, expected_asset):
            raise validation_error(
                f"transaction asset is not {tab.currency}",
                asset=tx.asset,
            )
        return tx

    def _record_payment(
        self,
        participant: TabParticipant,
        tx_hash: str,
        amount: Decimal,
        assessment: PenaltyAssessment,
        now: datetime,
        db: Session
    ) -> None:
        """Compare-and-set paid false -> true on an OPEN tab. Commits."""
        tab_open = select(Tab.id).where(
            Tab.id == participant.tab_id,
            Tab.status == TabStatus.OPEN
        ).exists()
        try:
            result = db.execute(
                update(TabParticipant)
                .where(
                    TabParticipant.id == participant.id,
                    TabParticipant.paid == False,  # noqa: E712
                    tab_open
                )
                .values(
                    paid=True,
                    paid_amount=amount,
                    paid_tx_hash=tx_hash,
                    paid_at=now,
                    days_late=assessment.days_late,
                    penalty_amount=assessment.penalty_amount,
                    final_amount=assessment.final_amount,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                db.refresh(participant)
                if participant.paid:
                    raise validation_error("already settled")
                raise validation_error("tab is not open")
            db.commit()
        except IntegrityError:
            db.rollback()
            raise validation_error("transaction already used for another settlement", tx_hash=tx_hash)

    def _notify(self, user_id: int, type: NotificationType, title: str, body: str, data: dict) -> None:
        try:
            self.notifier.publish(user_id, type, title, body, data)
        except Exception:
            logger.exception(f"Notification {type.value} to user {user_id} failed")
