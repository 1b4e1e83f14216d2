"""
Reminder scheduler: daily payment reminders and overdue escalation.

All progress is kept in the database (``last_reminder_sent_at``,
``reminder_count``, ``tabs.last_overdue_notice_at``), and each send is
preceded by a conditional UPDATE that claims the cooldown window, so an
interrupted run can simply be run again.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional
import logging
import threading

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from tabtrust.core.config import settings
from tabtrust.core.utils import as_utc, cooldown_cutoff, days_between, start_of_day, utcnow
from tabtrust.models.tab import Tab, TabParticipant, TabStatus
from tabtrust.services.email_service import EmailSender
from tabtrust.services.notification_service import NotificationPublisher, NotificationType
from tabtrust.services.otp_service import OTPService
from tabtrust.services.settlement_service import compute_penalty
from tabtrust.services.trust_service import TrustScoreEngine

logger = logging.getLogger(__name__)

# Days before the deadline -> reminder tone
REMINDER_OFFSETS = [(3, "upcoming"), (1, "urgent"), (0, "final")]
URGENCY_TITLES = {"upcoming": "Reminder", "urgent": "Urgent Reminder", "final": "Final Reminder"}


@dataclass
class ReminderRunStats:
    """Counts from one scheduler run."""
    reminders_sent: int = 0
    overdue_notices_sent: int = 0
    creator_summaries_sent: int = 0
    otps_removed: int = 0
    trust_updates_reconciled: int = 0
    failures: int = 0


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from ``now`` to the next ``hour``:00 UTC."""
    next_run = start_of_day(now.date()) + timedelta(hours=hour)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class ReminderScheduler:
    """Runs the reminder job once a day on a daemon thread."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        email_sender: EmailSender,
        notifier: NotificationPublisher,
        otp_service: OTPService,
        trust: TrustScoreEngine
    ):
        self.session_factory = session_factory
        self.email_sender = email_sender
        self.notifier = notifier
        self.otp_service = otp_service
        self.trust = trust
        self.cooldown_hours = settings.REMINDER_COOLDOWN_HOURS

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """Start the scheduler thread."""
        if self._thread and self._thread.is_alive():
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._thread_main,
            name="tabtrust-reminders",
            daemon=True,
        )
        self._thread.start()
        logger.info("Reminder scheduler started")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the scheduler thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Reminder scheduler stopped")

    def _thread_main(self) -> None:
        while not self._stop_event.is_set():
            delay = seconds_until_next_run(utcnow(), settings.REMINDER_HOUR_UTC)
            if self._stop_event.wait(timeout=delay):
                break
            logger.info("Starting scheduled payment reminder job")
            try:
                stats = self.run_once()
                logger.info(f"Payment reminder job completed: {stats}")
            except Exception:
                logger.exception("Payment reminder job failed")

    def run_once(self, now: Optional[datetime] = None) -> ReminderRunStats:
        """Run every phase once. Each phase uses its own session."""
        now = now or utcnow()
        stats = ReminderRunStats()

        with self.session_factory() as db:
            self.send_payment_reminders(db, now, stats)
        with self.session_factory() as db:
            self.handle_overdue_tabs(db, now, stats)
        with self.session_factory() as db:
            try:
                stats.otps_removed = self.otp_service.cleanup_expired_otps(db, now)
            except Exception:
                db.rollback()
                stats.failures += 1
                logger.exception("Expired OTP cleanup failed")
        with self.session_factory() as db:
            stats.trust_updates_reconciled = self.trust.reconcile_pending_trust_updates(db, now)
        return stats

    # Upcoming deadlines

    def send_payment_reminders(self, db: Session, now: datetime, stats: ReminderRunStats) -> None:
        for days_until_deadline, urgency in REMINDER_OFFSETS:
            self._send_reminders_for_offset(db, now, days_until_deadline, urgency, stats)

    def _send_reminders_for_offset(
        self, db: Session, now: datetime, days_until_deadline: int, urgency: str, stats: ReminderRunStats
    ) -> None:
        window_start = start_of_day(now.date() + timedelta(days=days_until_deadline))
        window_end = window_start + timedelta(days=1)
        cutoff = cooldown_cutoff(now, self.cooldown_hours)

        participants: List[TabParticipant] = db.query(TabParticipant).join(Tab).filter(
            Tab.status == TabStatus.OPEN,
            Tab.settlement_deadline.isnot(None),
            Tab.settlement_deadline >= window_start,
            Tab.settlement_deadline < window_end,
            TabParticipant.paid == False,  # noqa: E712
            or_(TabParticipant.last_reminder_sent_at.is_(None), TabParticipant.last_reminder_sent_at <= cutoff)
        ).order_by(TabParticipant.id).all()

        logger.info(f"Found {len(participants)} participants needing {urgency} reminders")

        for participant in participants:
            try:
                if not self._claim_reminder(participant.id, now, db):
                    continue
                self._send_reminder(participant.tab, participant, days_until_deadline, urgency)
                stats.reminders_sent += 1
                logger.info(
                    f"Reminder sent: tab {participant.tab_id}, user {participant.user_id}, "
                    f"{days_until_deadline} days, {urgency}"
                )
            except Exception:
                db.rollback()
                stats.failures += 1
                logger.exception(f"Failed to send reminder: tab {participant.tab_id}, user {participant.user_id}")

    def _send_reminder(self, tab: Tab, participant: TabParticipant, days_remaining: int, urgency: str) -> None:
        user = participant.user
        time_text = "today" if days_remaining == 0 else f"in {days_remaining} day{'s' if days_remaining > 1 else ''}"
        share = Decimal(participant.share_amount)

        if user.email:
            try:
                self.email_sender.send_payment_reminder(
                    to=user.email,
                    tab_title=tab.title,
                    amount=share,
                    currency=tab.currency,
                    deadline=as_utc(tab.settlement_deadline),
                    days_remaining=days_remaining,
                    penalty_rate_bps=tab.penalty_rate_bps,
                    creator_name=tab.creator.username,
                    urgency=urgency
                )
            except Exception:
                logger.exception(f"Reminder email to user {user.id} failed")

        self.notifier.publish(
            participant.user_id,
            NotificationType.PAYMENT_REMINDER,
            f"{URGENCY_TITLES[urgency]}: {tab.title}",
            f"Payment of {share} {tab.currency} is due {time_text}",
            {
                "tabId": tab.id,
                "deadline": as_utc(tab.settlement_deadline).isoformat(),
                "amount": str(share),
                "penaltyRateBps": tab.penalty_rate_bps,
                "daysRemaining": days_remaining,
            }
        )

    # Overdue tabs

    def handle_overdue_tabs(self, db: Session, now: datetime, stats: ReminderRunStats) -> None:
        tabs: List[Tab] = db.query(Tab).filter(
            Tab.status == TabStatus.OPEN,
            Tab.settlement_deadline.isnot(None),
            Tab.settlement_deadline < now
        ).order_by(Tab.id).all()

        logger.info(f"Found {len(tabs)} overdue tabs")

        for tab in tabs:
            try:
                self._handle_overdue_tab(db, tab, now, stats)
            except Exception:
                db.rollback()
                stats.failures += 1
                logger.exception(f"Failed to process overdue tab {tab.id}")

    def _handle_overdue_tab(self, db: Session, tab: Tab, now: datetime, stats: ReminderRunStats) -> None:
        unpaid = [p for p in tab.participants if not p.paid]
        if not unpaid:
            return

        cutoff = cooldown_cutoff(now, self.cooldown_hours)
        days_overdue = days_between(now, tab.settlement_deadline)

        for participant in unpaid:
            last = participant.last_reminder_sent_at
            if last is not None and as_utc(last) > cutoff:
                continue
            try:
                if not self._claim_reminder(participant.id, now, db):
                    continue
                self._send_overdue_notice(tab, participant, days_overdue, now)
                stats.overdue_notices_sent += 1
            except Exception:
                db.rollback()
                stats.failures += 1
                logger.exception(f"Failed to send overdue notification: tab {tab.id}, user {participant.user_id}")

        if self._claim_creator_notice(tab.id, now, db):
            self._notify_creator_about_overdue(tab, unpaid, days_overdue)
            stats.creator_summaries_sent += 1

    def _send_overdue_notice(self, tab: Tab, participant: TabParticipant, days_overdue: int, now: datetime) -> None:
        user = participant.user
        assessment = compute_penalty(
            participant.share_amount, tab.penalty_rate_bps, tab.settlement_deadline, now, tab.currency
        )
        plural = "s" if days_overdue > 1 else ""

        if user.email:
            try:
                self.email_sender.send_overdue_notification(
                    to=user.email,
                    tab_title=tab.title,
                    amount=Decimal(participant.share_amount),
                    penalty_amount=assessment.penalty_amount,
                    total_due=assessment.final_amount,
                    currency=tab.currency,
                    days_overdue=days_overdue
                )
            except Exception:
                logger.exception(f"Overdue email to user {user.id} failed")

        self.notifier.publish(
            participant.user_id,
            NotificationType.PAYMENT_REMINDER,
            "Payment Overdue",
            f"{tab.title} is {days_overdue} day{plural} overdue. Penalty: {assessment.penalty_amount} {tab.currency}",
            {
                "tabId": tab.id,
                "daysOverdue": days_overdue,
                "penaltyAmount": str(assessment.penalty_amount),
                "totalDue": str(assessment.final_amount),
            }
        )
        logger.info(f"Overdue notification sent: tab {tab.id}, user {participant.user_id}, {days_overdue} days")

    def _notify_creator_about_overdue(self, tab: Tab, unpaid: List[TabParticipant], days_overdue: int) -> None:
        count = len(unpaid)
        names = ", ".join(p.user.username for p in unpaid)
        self.notifier.publish(
            tab.creator_id,
            NotificationType.TAB_UPDATED,
            f"Tab Overdue: {tab.title}",
            f"{count} participant{'s' if count > 1 else ''} {'have' if count > 1 else 'has'} not paid "
            f"({days_overdue} days overdue): {names}",
            {
                "tabId": tab.id,
                "daysOverdue": days_overdue,
                "unpaidCount": count,
                "unpaidParticipants": [p.user_id for p in unpaid],
            }
        )
        logger.info(f"Creator {tab.creator_id} notified about overdue tab {tab.id} ({count} unpaid)")

    # Cooldown claims

    def _claim_reminder(self, participant_id: int, now: datetime, db: Session) -> bool:
        """Stamp the reminder if none was sent within the cooldown. Commits."""
        cutoff = cooldown_cutoff(now, self.cooldown_hours)
        result = db.execute(
            update(TabParticipant)
            .where(
                TabParticipant.id == participant_id,
                TabParticipant.paid == False,  # noqa: E712
                or_(TabParticipant.last_reminder_sent_at.is_(None), TabParticipant.last_reminder_sent_at <= cutoff)
            )
            .values(last_reminder_sent_at=now, reminder_count=TabParticipant.reminder_count + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def _claim_creator_notice(self, tab_id: int, now: datetime, db: Session) -> bool:
        cutoff = cooldown_cutoff(now, self.cooldown_hours)
        result = db.execute(
            update(Tab)
            .where(
                Tab.id == tab_id,
                or_(Tab.last_overdue_notice_at.is_(None), Tab.last_overdue_notice_at <= cutoff)
            )
            .values(last_overdue_notice_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1
