"""
Tests for OTP-gated participation and share recalculation on decline.
"""
from decimal import Decimal

import pytest

from tabtrust.core.errors import ErrorKind, ServiceError
from tabtrust.models.otp import OTPCode, OTPType
from tabtrust.models.tab import Tab, TabParticipant, TabStatus
from tabtrust.services.notification_service import NotificationType
from tabtrust.tests.conftest import tx_hash


def _shares(db, tab_id):
    rows = db.query(TabParticipant).filter(TabParticipant.tab_id == tab_id).populate_existing().all()
    return {row.user_id: Decimal(row.share_amount) for row in rows}


def _tab(db, tab_id):
    return db.query(Tab).filter(Tab.id == tab_id).populate_existing().one()


def test_invitations_sent_to_everyone_but_creator(db, email_sender, notifier, make_tab, users):
    tab = make_tab(["alice", "bob", "carol"])

    assert sorted(m["to"] for m in email_sender.otps) == ["bob@example.com", "carol@example.com"]
    assert len(notifier.of_type(NotificationType.TAB_CREATED)) == 2
    creator_row = next(p for p in tab.participants if p.user_id == users["alice"].id)
    assert creator_row.verified is True
    assert db.query(OTPCode).count() == 2


def test_accept_with_valid_code(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob = users["bob"]

    participant = services.participation.verify_participation(
        bob.id, tab.id, email_sender.last_code(bob.email), True, db
    )

    assert participant.verified is True
    with pytest.raises(ServiceError) as exc:
        services.participation.verify_participation(bob.id, tab.id, email_sender.last_code(bob.email), True, db)
    assert exc.value.message == "participation already verified"


def test_code_is_single_use(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob = users["bob"]
    code = email_sender.last_code(bob.email)
    services.participation.verify_participation(bob.id, tab.id, code, True, db)

    assert services.otp_service.find_valid_otp(bob.email, code, OTPType.TAB_PARTICIPATION, db) is None


def test_wrong_code_rejected(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob = users["bob"]
    wrong = "000000" if email_sender.last_code(bob.email) != "000000" else "111111"

    with pytest.raises(ServiceError) as exc:
        services.participation.verify_participation(bob.id, tab.id, wrong, True, db)

    assert exc.value.kind == ErrorKind.VALIDATION
    assert exc.value.message == "invalid or expired OTP"


def test_code_for_another_tab_rejected(db, services, email_sender, make_tab, users):
    first = make_tab(["bob"])
    first_code = email_sender.last_code(users["bob"].email)
    second = make_tab(["bob"])

    with pytest.raises(ServiceError) as exc:
        services.participation.verify_participation(users["bob"].id, second.id, first_code, True, db)
    assert exc.value.message == "OTP does not match this tab"

    # Still usable for the tab it was issued for
    participant = services.participation.verify_participation(users["bob"].id, first.id, first_code, True, db)
    assert participant.verified is True


def test_creator_does_not_verify(db, services, make_tab, users):
    tab = make_tab(["alice", "bob"])
    with pytest.raises(ServiceError) as exc:
        services.participation.verify_participation(users["alice"].id, tab.id, "123456", True, db)
    assert exc.value.kind == ErrorKind.VALIDATION


def test_decline_resplits_even_tab(db, services, email_sender, notifier, make_tab, users):
    tab = make_tab(["alice", "bob", "carol", "dave"])
    dave = users["dave"]

    result = services.participation.verify_participation(
        dave.id, tab.id, email_sender.last_code(dave.email), False, db
    )

    assert result is None
    shares = _shares(db, tab.id)
    assert dave.id not in shares
    assert sum(shares.values()) == Decimal("100")
    assert sorted(shares.values()) == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert _tab(db, tab.id).total_amount == Decimal("100")
    declined = notifier.of_type(NotificationType.TAB_UPDATED)
    assert [n["user_id"] for n in declined] == [users["alice"].id]


def test_decline_keeps_paid_shares(db, services, ledger, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol", "dave"], total="90")
    bob = users["bob"]
    ledger.transfer(tx_hash(1), bob.wallet_address, Decimal("30"))
    services.settlement.settle(tab.id, bob.id, tx_hash(1), Decimal("30"), db)

    services.participation.verify_participation(
        users["dave"].id, tab.id, email_sender.last_code(users["dave"].email), False, db
    )

    shares = _shares(db, tab.id)
    assert shares == {bob.id: Decimal("30"), users["carol"].id: Decimal("60")}


def test_decline_lowers_total_of_custom_tab(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"], shares={"bob": "70", "carol": "30"})

    services.participation.verify_participation(
        users["carol"].id, tab.id, email_sender.last_code(users["carol"].email), False, db
    )

    assert _shares(db, tab.id) == {users["bob"].id: Decimal("70")}
    assert _tab(db, tab.id).total_amount == Decimal("70")


def test_decline_by_last_unpaid_participant_settles_tab(db, services, ledger, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob = users["bob"]
    ledger.transfer(tx_hash(1), bob.wallet_address, Decimal("50"))
    services.settlement.settle(tab.id, bob.id, tx_hash(1), Decimal("50"), db)

    services.participation.verify_participation(
        users["carol"].id, tab.id, email_sender.last_code(users["carol"].email), False, db
    )

    settled = _tab(db, tab.id)
    assert settled.status == TabStatus.SETTLED
    assert settled.total_amount == Decimal("50")


def test_decline_by_only_participant_cancels_tab(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob"])

    services.participation.verify_participation(
        users["bob"].id, tab.id, email_sender.last_code(users["bob"].email), False, db
    )

    assert _tab(db, tab.id).status == TabStatus.CANCELLED


def test_resend_issues_new_code(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob = users["bob"]

    services.tabs.resend_otp(bob.id, tab.id, db)

    assert len([m for m in email_sender.otps if m["to"] == bob.email]) == 2
    participant = services.participation.verify_participation(
        bob.id, tab.id, email_sender.last_code(bob.email), True, db
    )
    assert participant.verified is True


def test_verify_otp_returns_metadata_once(db, services, email_sender, make_tab, users):
    tab = make_tab(["bob"])
    bob = users["bob"]
    code = email_sender.last_code(bob.email)

    first = services.otp_service.verify_otp(bob.email, code, OTPType.TAB_PARTICIPATION, db)
    second = services.otp_service.verify_otp(bob.email, code, OTPType.TAB_PARTICIPATION, db)

    assert first.valid is True
    assert first.metadata["tab_id"] == tab.id
    assert second.valid is False
