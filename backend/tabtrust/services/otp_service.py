"""
OTP service for tab participation codes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging
import secrets

from sqlalchemy import update
from sqlalchemy.orm import Session

from tabtrust.core.config import settings
from tabtrust.core.utils import utcnow
from tabtrust.models.otp import OTPCode, OTPType
from tabtrust.services.email_service import EmailSender

logger = logging.getLogger(__name__)


@dataclass
class OTPVerification:
    """Result of checking a code."""
    valid: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


def generate_code() -> str:
    """Six random digits."""
    return f"{secrets.randbelow(1_000_000):06d}"


class OTPService:
    """Creates, delivers and consumes one-time codes."""

    def __init__(self, email_sender: EmailSender):
        self.email_sender = email_sender

    def create_otp(
        self, email: str, type: OTPType, metadata: Dict[str, Any], db: Session, now: Optional[datetime] = None
    ) -> OTPCode:
        """Stage a new code in the session. The caller commits."""
        now = now or utcnow()
        otp = OTPCode(
            email=email,
            code=generate_code(),
            type=type,
            otp_metadata=metadata,
            expires_at=now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
            used=False
        )
        db.add(otp)
        return otp

    def send_otp(self, otp: OTPCode) -> None:
        """Email a stored code."""
        metadata = otp.otp_metadata or {}
        self.email_sender.send_tab_participation_otp(
            otp.email,
            otp.code,
            metadata.get("tab_title", ""),
            metadata.get("share_amount"),
            metadata.get("currency", "")
        )
        logger.info(f"OTP sent to {otp.email} ({otp.type.value})")

    def create_and_send_otp(self, email: str, type: OTPType, metadata: Dict[str, Any], db: Session) -> OTPCode:
        otp = self.create_otp(email, type, metadata, db)
        db.commit()
        self.send_otp(otp)
        return otp

    def find_valid_otp(
        self, email: str, code: str, type: OTPType, db: Session, now: Optional[datetime] = None
    ) -> Optional[OTPCode]:
        """Newest unused, unexpired code matching (email, code, type)."""
        now = now or utcnow()
        return db.query(OTPCode).filter(
            OTPCode.email == email,
            OTPCode.code == code,
            OTPCode.type == type,
            OTPCode.used == False,  # noqa: E712
            OTPCode.expires_at > now
        ).order_by(OTPCode.created_at.desc(), OTPCode.id.desc()).first()

    def consume_otp(self, otp: OTPCode, db: Session) -> bool:
        """
        Mark a code used. Returns False if another request consumed it first.
        Runs inside the caller's transaction; the caller commits.
        """
        result = db.execute(
            update(OTPCode)
            .where(OTPCode.id == otp.id, OTPCode.used == False)  # noqa: E712
            .values(used=True)
        )
        return result.rowcount == 1

    def verify_otp(self, email: str, code: str, type: OTPType, db: Session) -> OTPVerification:
        """Find and consume a code in one step."""
        otp = self.find_valid_otp(email, code, type, db)
        if not otp or not self.consume_otp(otp, db):
            logger.warning(f"Invalid OTP attempt for {email} ({type.value})")
            return OTPVerification(valid=False)
        db.commit()
        logger.info(f"OTP verified for {email} ({type.value})")
        return OTPVerification(valid=True, metadata=otp.otp_metadata or {})

    def cleanup_expired_otps(self, db: Session, now: Optional[datetime] = None) -> int:
        """Delete expired codes. Returns the number removed."""
        now = now or utcnow()
        deleted = db.query(OTPCode).filter(OTPCode.expires_at < now).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Cleaned up {deleted} expired OTPs")
        return deleted
