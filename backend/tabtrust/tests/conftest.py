"""
Shared fixtures: a SQLite database per test and fake external collaborators.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "tabtrust_tests.db")
os.environ["SETTLEMENT_ADDRESS"] = "0xse771e"

from datetime import timedelta
from decimal import Decimal

import pytest
from redis import RedisError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tabtrust.core.errors import internal_error
from tabtrust.core.utils import utcnow
from tabtrust.db.base import Base
from tabtrust.models.user import User, Friendship, FriendshipStatus
from tabtrust.services.container import assemble_services
from tabtrust.services.ledger_service import LedgerTransaction
from tabtrust.services.share_service import ShareRequest

SETTLEMENT_ADDRESS = "0xse771e"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


class FakeLedger:
    """Ledger answering from registered transactions."""

    def __init__(self):
        self.transactions = {}
        self.calls = []

    def add(self, tx: LedgerTransaction):
        self.transactions[tx.tx_hash] = tx

    def transfer(self, hash_: str, sender: str, value: Decimal, decimals: int = 6, **overrides):
        tx = LedgerTransaction(
            tx_hash=hash_,
            confirmed=True,
            from_address=sender,
            to_address=SETTLEMENT_ADDRESS,
            amount=int(Decimal(value).scaleb(decimals)),
            block_number=1,
        )
        for key, override in overrides.items():
            setattr(tx, key, override)
        self.add(tx)
        return tx

    def verify_transaction(self, tx_hash: str) -> LedgerTransaction:
        self.calls.append(tx_hash)
        return self.transactions[tx_hash]


class FakeNotifier:
    """Records published notifications; can fail for chosen users."""

    def __init__(self):
        self.published = []
        self.fail_for = set()

    def publish(self, user_id, type, title, body, data=None):
        if user_id in self.fail_for:
            raise RedisError("redis unavailable")
        self.published.append({"user_id": user_id, "type": type, "title": title, "body": body, "data": data or {}})
        return True

    def of_type(self, type):
        return [n for n in self.published if n["type"] == type]


class FakeEmailSender:
    """Records emails instead of sending them."""

    def __init__(self):
        self.otps = []
        self.reminders = []
        self.overdue = []
        self.fail_for = set()

    def _check(self, to):
        if to in self.fail_for:
            raise internal_error("Failed to send email")

    def send_tab_participation_otp(self, to, code, tab_title, share_amount, currency):
        self._check(to)
        self.otps.append({"to": to, "code": code, "tab_title": tab_title, "share_amount": share_amount})

    def send_payment_reminder(self, to, tab_title, amount, currency, deadline, days_remaining,
                              penalty_rate_bps, creator_name, urgency):
        self._check(to)
        self.reminders.append({"to": to, "tab_title": tab_title, "days_remaining": days_remaining,
                               "urgency": urgency})

    def send_overdue_notification(self, to, tab_title, amount, penalty_amount, total_due, currency, days_overdue):
        self._check(to)
        self.overdue.append({"to": to, "penalty_amount": penalty_amount, "total_due": total_due,
                             "days_overdue": days_overdue})

    def last_code(self, to):
        return [m["code"] for m in self.otps if m["to"] == to][-1]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tabtrust.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def services(ledger, notifier, email_sender):
    return assemble_services(ledger=ledger, notifier=notifier, email_sender=email_sender)


def make_user(db, username, email=None, wallet=None):
    user = User(
        username=username,
        email=email if email is not None else f"{username}@example.com",
        wallet_address=wallet if wallet is not None else f"0x{username}",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def befriend(db, user, *friends):
    for friend in friends:
        db.add(Friendship(user_id=user.id, friend_id=friend.id, status=FriendshipStatus.ACCEPTED))
        db.add(Friendship(user_id=friend.id, friend_id=user.id, status=FriendshipStatus.ACCEPTED))
    db.commit()


@pytest.fixture
def users(db):
    """alice (creator) with friends bob, carol and dave."""
    alice = make_user(db, "alice")
    bob = make_user(db, "bob")
    carol = make_user(db, "carol")
    dave = make_user(db, "dave")
    befriend(db, alice, bob, carol, dave)
    return {"alice": alice, "bob": bob, "carol": carol, "dave": dave}


@pytest.fixture
def make_tab(db, services, users):
    """Create a tab as alice with the named participants."""
    def _make_tab(names, total="100", shares=None, deadline_in=timedelta(days=7), **kwargs):
        shares = shares or {}
        requests = [
            ShareRequest(users[name].id, Decimal(shares[name]) if name in shares else None)
            for name in names
        ]
        return services.tabs.create_tab(
            creator_id=users["alice"].id,
            title="Dinner",
            total_amount=Decimal(total),
            participants=requests,
            db=db,
            settlement_deadline=utcnow() + deadline_in if deadline_in is not None else None,
            **kwargs
        )
    return _make_tab
