"""
Tests for trust score computation and application.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from tabtrust.core.utils import utcnow
from tabtrust.models.settlement import SettlementHistory
from tabtrust.models.tab import TabParticipant
from tabtrust.models.user import User
from tabtrust.services.trust_service import TrustScoreEngine, TrustStats, get_trust_tier, score


@pytest.mark.parametrize("on_time,late,expected", [
    (0, 0, 100),
    (0, 1, 90),
    (10, 1, 95),
    (200, 0, 150),
    (0, 11, 0),
    (9, 0, 100),
])
def test_score(on_time, late, expected):
    stats = TrustStats(settlements_on_time=on_time, settlements_late=late, total_settlements=on_time + late)
    assert score(stats) == expected


@pytest.mark.parametrize("trust_score,tier", [
    (150, "Excellent"),
    (120, "Excellent"),
    (100, "Good"),
    (95, "Fair"),
    (70, "Fair"),
    (69, "Poor"),
    (0, "Poor"),
])
def test_trust_tier(trust_score, tier):
    assert get_trust_tier(trust_score)["tier"] == tier


def _mark_paid(db, participant, days_late=0, paid_at=None):
    participant.paid = True
    participant.paid_amount = participant.share_amount
    participant.paid_at = paid_at or utcnow() - timedelta(hours=2)
    participant.days_late = days_late
    participant.penalty_amount = Decimal("0")
    db.commit()


def test_update_applies_once(db, make_tab, users):
    tab = make_tab(["bob", "carol"])
    bob_row = next(p for p in tab.participants if p.user_id == users["bob"].id)
    _mark_paid(db, bob_row, days_late=2)
    engine = TrustScoreEngine()

    history = engine.update_trust_score(bob_row.id, db)
    again = engine.update_trust_score(bob_row.id, db)

    assert history.trust_score_before == 100
    assert history.trust_score_after == 90
    assert history.settled_on_time is False
    assert again is None

    bob = db.query(User).filter(User.id == users["bob"].id).populate_existing().one()
    assert (bob.trust_score, bob.settlements_late, bob.total_settlements) == (90, 1, 1)
    assert db.query(SettlementHistory).filter(SettlementHistory.user_id == bob.id).count() == 1


def test_update_ignores_unpaid_participant(db, make_tab, users):
    tab = make_tab(["bob"])
    assert TrustScoreEngine().update_trust_score(tab.participants[0].id, db) is None


def test_reconcile_applies_pending_updates(db, make_tab, users):
    tab = make_tab(["bob", "carol"])
    for row in tab.participants:
        _mark_paid(db, row)

    applied = TrustScoreEngine().reconcile_pending_trust_updates(db, now=utcnow() + timedelta(hours=2))

    assert applied == 2
    pending = db.query(TabParticipant).filter(TabParticipant.trust_score_applied == False).count()  # noqa: E712
    assert pending == 0
    assert TrustScoreEngine().reconcile_pending_trust_updates(db, now=utcnow() + timedelta(hours=2)) == 0


def test_reconcile_skips_recent_payments(db, make_tab, users):
    tab = make_tab(["bob"])
    _mark_paid(db, tab.participants[0], paid_at=utcnow())

    assert TrustScoreEngine().reconcile_pending_trust_updates(db, now=utcnow()) == 0
