"""
Tests for share calculation and participant eligibility.
"""
from decimal import Decimal

import pytest

from tabtrust.core.errors import ErrorKind, ServiceError
from tabtrust.services.identity_service import IdentityStore
from tabtrust.services.share_service import ShareRequest, allocate_even, calculate_shares, ensure_eligible
from tabtrust.tests.conftest import make_user


def test_even_split_gives_remainder_to_first_participants():
    shares = calculate_shares(Decimal("100"), [ShareRequest(1), ShareRequest(2), ShareRequest(3)], "USDC")

    assert [s.share_amount for s in shares] == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert sum(s.share_amount for s in shares) == Decimal("100")


def test_even_split_exact():
    shares = allocate_even(Decimal("100"), [1, 2, 3, 4], "USDC")
    assert [s.share_amount for s in shares] == [Decimal("25.00")] * 4


def test_even_split_of_smallest_units():
    shares = allocate_even(Decimal("0.05"), [1, 2, 3], "USDC")
    assert [s.share_amount for s in shares] == [Decimal("0.02"), Decimal("0.02"), Decimal("0.01")]


def test_even_split_below_one_unit_each_rejected():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("0.02"), [ShareRequest(1), ShareRequest(2), ShareRequest(3)], "USDC")

    assert exc.value.kind == ErrorKind.VALIDATION
    assert exc.value.message == "total too small to split"
    assert allocate_even(Decimal("0.03"), [1, 2, 3], "USDC")[-1].share_amount == Decimal("0.01")


def test_custom_shares_taken_as_given():
    shares = calculate_shares(
        Decimal("100"),
        [ShareRequest(1, Decimal("70")), ShareRequest(2, Decimal("30"))],
        "USDC"
    )
    assert {s.user_id: s.share_amount for s in shares} == {1: Decimal("70"), 2: Decimal("30")}


def test_custom_shares_must_sum_to_total():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("100"), [ShareRequest(1, Decimal("50")), ShareRequest(2, Decimal("40"))], "USDC")

    assert exc.value.kind == ErrorKind.VALIDATION
    assert exc.value.message == "shares must equal total"
    assert exc.value.details["shares_sum"] == "90"


def test_custom_shares_must_be_positive():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("100"), [ShareRequest(1, Decimal("100")), ShareRequest(2, Decimal("0"))], "USDC")
    assert exc.value.kind == ErrorKind.VALIDATION


def test_empty_participants_rejected():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("100"), [], "USDC")
    assert exc.value.message == "at least one participant required"


def test_duplicate_participants_rejected():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("100"), [ShareRequest(1), ShareRequest(1)], "USDC")
    assert exc.value.message == "duplicate participant"


def test_total_more_precise_than_currency_rejected():
    with pytest.raises(ServiceError) as exc:
        calculate_shares(Decimal("10.005"), [ShareRequest(1)], "USDC")
    assert exc.value.kind == ErrorKind.VALIDATION


def test_non_friends_are_not_eligible(db, users):
    stranger = make_user(db, "mallory")
    identity = IdentityStore()

    ensure_eligible(users["alice"].id, [users["alice"].id, users["bob"].id], identity, db)

    with pytest.raises(ServiceError) as exc:
        ensure_eligible(users["alice"].id, [users["bob"].id, stranger.id], identity, db)
    assert exc.value.message == "all participants must be friends with the creator"
    assert exc.value.details["user_ids"] == [stranger.id]
