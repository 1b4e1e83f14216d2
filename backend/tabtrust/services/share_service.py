"""
Share calculator for splitting a tab total across participants.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from tabtrust.core.errors import validation_error
from tabtrust.core.utils import currency_unit, floor_amount, quantize_amount
from tabtrust.services.identity_service import IdentityStore


@dataclass
class ShareRequest:
    """A participant as requested by the tab creator."""
    user_id: int
    share_amount: Optional[Decimal] = None


@dataclass
class ShareAllocation:
    """A participant's computed share."""
    user_id: int
    share_amount: Decimal


def allocate_even(total: Decimal, user_ids: Sequence[int], currency: str) -> List[ShareAllocation]:
    """
    Split ``total`` evenly at the currency scale.

    Each share is floored to the currency unit and the remainder is handed
    out one unit at a time to the first participants in list order, so the
    shares always sum to ``total``: 100 over 3 is 33.34, 33.33, 33.33.
    """
    if not user_ids:
        raise validation_error("at least one participant required")

    unit = currency_unit(currency)
    count = len(user_ids)
    if Decimal(total) < unit * count:
        raise validation_error("total too small to split", total=str(total), participants=count)
    base = floor_amount(total / count, currency)
    remainder_units = int((total - base * count) / unit)

    return [
        ShareAllocation(user_id=user_id, share_amount=base + (unit if index < remainder_units else 0))
        for index, user_id in enumerate(user_ids)
    ]


def calculate_shares(total: Decimal, participants: Sequence[ShareRequest], currency: str) -> List[ShareAllocation]:
    """
    Compute shares for a new tab.

    If any participant carries a custom share, every share is taken as
    given and they must sum to the total exactly; otherwise the total is
    split evenly.
    """
    if not participants:
        raise validation_error("at least one participant required")

    user_ids = [p.user_id for p in participants]
    if len(set(user_ids)) != len(user_ids):
        raise validation_error("duplicate participant")

    total = Decimal(total)
    if total <= 0:
        raise validation_error("total amount must be positive")
    if quantize_amount(total, currency) != total:
        raise validation_error(f"total amount has more precision than {currency} allows")

    if any(p.share_amount is not None for p in participants):
        shares = []
        for p in participants:
            if p.share_amount is None or Decimal(p.share_amount) <= 0:
                raise validation_error("custom shares must be positive", user_id=p.user_id)
            if quantize_amount(p.share_amount, currency) != Decimal(p.share_amount):
                raise validation_error(f"share has more precision than {currency} allows", user_id=p.user_id)
            shares.append(ShareAllocation(user_id=p.user_id, share_amount=Decimal(p.share_amount)))

        share_sum = sum((s.share_amount for s in shares), Decimal(0))
        if share_sum != total:
            raise validation_error("shares must equal total", total=str(total), shares_sum=str(share_sum))
        return shares

    return allocate_even(total, user_ids, currency)


def ensure_eligible(creator_id: int, user_ids: Sequence[int], identity: IdentityStore, db: Session) -> None:
    """Every participant other than the creator must be an accepted friend of the creator."""
    not_friends = [
        user_id for user_id in user_ids
        if user_id != creator_id and not identity.is_friend(creator_id, user_id, db)
    ]
    if not_friends:
        raise validation_error("all participants must be friends with the creator", user_ids=not_friends)
