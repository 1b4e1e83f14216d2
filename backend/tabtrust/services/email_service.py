"""
Email delivery through the Mailgun HTTP API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

import httpx

from tabtrust.core.config import settings
from tabtrust.core.errors import internal_error

logger = logging.getLogger(__name__)

URGENCY_SUBJECTS = {
    "upcoming": "Reminder",
    "urgent": "Urgent Reminder",
    "final": "Final Reminder",
}


class EmailSender:
    """Sends transactional emails. Raises INTERNAL on delivery failure."""

    def __init__(self, client: httpx.Client, domain: Optional[str] = None, api_key: Optional[str] = None):
        self.client = client
        self.domain = domain or settings.MAILGUN_DOMAIN
        self.api_key = api_key or settings.MAILGUN_API_KEY
        self.sender = settings.MAIL_FROM or f"{settings.APP_NAME} <postmaster@{self.domain}>"

    def send(self, to: str, subject: str, html: str) -> None:
        url = f"{settings.MAILGUN_API_URL}/{self.domain}/messages"
        try:
            response = self.client.post(
                url,
                auth=("api", self.api_key),
                data={"from": self.sender, "to": [to], "subject": subject, "html": html},
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email '{subject}' to {to}: {e}")
            raise internal_error("Failed to send email")
        logger.info(f"Email '{subject}' sent to {to}")

    def send_tab_participation_otp(
        self, to: str, code: str, tab_title: str, share_amount: Decimal, currency: str
    ) -> None:
        html = (
            f"<h2>{settings.APP_NAME} - Tab Invitation</h2>"
            f"<p>You've been added to a new tab: <strong>\"{tab_title}\"</strong></p>"
            f"<p>Your share: <strong>{currency} {share_amount}</strong></p>"
            f"<p>Your verification code is:</p>"
            f"<div style=\"font-size: 32px; font-weight: bold; letter-spacing: 8px;\">{code}</div>"
            f"<p>Enter this code in the app to accept or decline this tab.</p>"
            f"<p>This code will expire in {settings.OTP_EXPIRY_MINUTES} minutes.</p>"
        )
        self.send(to, f"You've been added to \"{tab_title}\"", html)

    def send_payment_reminder(
        self,
        to: str,
        tab_title: str,
        amount: Decimal,
        currency: str,
        deadline: datetime,
        days_remaining: int,
        penalty_rate_bps: int,
        creator_name: str,
        urgency: str
    ) -> None:
        when = "today" if days_remaining == 0 else f"in {days_remaining} day{'s' if days_remaining > 1 else ''}"
        html = (
            f"<h2>{URGENCY_SUBJECTS[urgency]}: {tab_title}</h2>"
            f"<p>Your payment of <strong>{currency} {amount}</strong> to {creator_name} is due {when} "
            f"({deadline:%Y-%m-%d %H:%M} UTC).</p>"
            f"<p>Late payments incur a {Decimal(penalty_rate_bps) / 100}% penalty.</p>"
        )
        self.send(to, f"{URGENCY_SUBJECTS[urgency]}: {tab_title}", html)

    def send_overdue_notification(
        self,
        to: str,
        tab_title: str,
        amount: Decimal,
        penalty_amount: Decimal,
        total_due: Decimal,
        currency: str,
        days_overdue: int
    ) -> None:
        html = (
            f"<h2>Payment Overdue: {tab_title}</h2>"
            f"<p>Your payment is {days_overdue} day{'s' if days_overdue > 1 else ''} overdue.</p>"
            f"<p>Share: {currency} {amount}<br>Penalty: {currency} {penalty_amount}<br>"
            f"<strong>Total due: {currency} {total_due}</strong></p>"
        )
        self.send(to, f"Payment Overdue: {tab_title}", html)
