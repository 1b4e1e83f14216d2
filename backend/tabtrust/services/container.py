"""
Service wiring.

Every component gets its collaborators through its constructor; this is
the one place the real HTTP and Redis clients are created.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional
import logging

import httpx
from fastapi import Request
from redis import Redis

from tabtrust.core.config import Settings, settings as default_settings
from tabtrust.services.email_service import EmailSender
from tabtrust.services.identity_service import IdentityStore
from tabtrust.services.ledger_service import LedgerVerifier
from tabtrust.services.notification_service import NotificationPublisher
from tabtrust.services.otp_service import OTPService
from tabtrust.services.participation_service import ParticipationVerifier
from tabtrust.services.settlement_service import SettlementProcessor
from tabtrust.services.tab_service import TabService
from tabtrust.services.trust_service import TrustScoreEngine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    identity: IdentityStore
    ledger: LedgerVerifier
    notifier: NotificationPublisher
    email_sender: EmailSender
    otp_service: OTPService
    trust: TrustScoreEngine
    tabs: TabService
    settlement: SettlementProcessor
    participation: ParticipationVerifier
    clients: List[Any] = field(default_factory=list)

    def close(self) -> None:
        """Release the HTTP and Redis connections opened by build_services."""
        for client in self.clients:
            try:
                client.close()
            except Exception:
                logger.exception(f"Failed to close {type(client).__name__}")
        self.clients = []


def assemble_services(
    ledger: LedgerVerifier,
    notifier: NotificationPublisher,
    email_sender: EmailSender
) -> Services:
    """Build the business services around the given external adapters."""
    identity = IdentityStore()
    otp_service = OTPService(email_sender)
    trust = TrustScoreEngine()
    return Services(
        identity=identity,
        ledger=ledger,
        notifier=notifier,
        email_sender=email_sender,
        otp_service=otp_service,
        trust=trust,
        tabs=TabService(identity, otp_service, notifier),
        settlement=SettlementProcessor(ledger, trust, identity, notifier),
        participation=ParticipationVerifier(otp_service, identity, notifier),
    )


def build_services(config: Optional[Settings] = None) -> Services:
    """Create the production clients and the services that use them."""
    config = config or default_settings
    ledger_client = httpx.Client(timeout=config.LEDGER_TIMEOUT_SECONDS)
    mail_client = httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS)
    redis_client = Redis.from_url(
        config.REDIS_URL,
        socket_timeout=config.REDIS_TIMEOUT_SECONDS,
        socket_connect_timeout=config.REDIS_TIMEOUT_SECONDS,
    )
    logger.info(f"Services configured (ledger {config.LEDGER_RPC_URL})")
    services = assemble_services(
        ledger=LedgerVerifier(ledger_client, config.LEDGER_RPC_URL),
        notifier=NotificationPublisher(redis_client),
        email_sender=EmailSender(mail_client, config.MAILGUN_DOMAIN, config.MAILGUN_API_KEY),
    )
    services.clients = [ledger_client, mail_client, redis_client]
    return services


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services built at startup."""
    return request.app.state.services
