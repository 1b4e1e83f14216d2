"""
Tab management routes.
"""
from dataclasses import asdict
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from tabtrust.core.utils import format_response
from tabtrust.db.session import get_db
from tabtrust.models.user import User
from tabtrust.models.tab import Tab, TabCategory, TabStatus
from tabtrust.schemas.tab import (
    TabCreate, TabUpdate, TabResponse, TabDetailResponse, TabSummaryResponse,
    TabListItem, TabListResponse, TabParticipantResponse,
    SettlePaymentRequest, ParticipationVerifyRequest
)
from tabtrust.api.dependencies import get_current_user
from tabtrust.services.container import Services, get_services
from tabtrust.services.share_service import ShareRequest
from tabtrust.services.tab_service import summarize

router = APIRouter(prefix="/tabs", tags=["tabs"])


def tab_detail(tab: Tab) -> TabDetailResponse:
    """Serialize a tab with its payment summary."""
    base = TabResponse.model_validate(tab).model_dump()
    return TabDetailResponse(**base, summary=TabSummaryResponse(**asdict(summarize(tab))))


@router.post("", response_model=TabDetailResponse, status_code=status.HTTP_201_CREATED)
def create_tab(
    tab_data: TabCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Create a tab and invite its participants."""
    tab = services.tabs.create_tab(
        creator_id=current_user.id,
        title=tab_data.title,
        total_amount=tab_data.total_amount,
        participants=[ShareRequest(p.user_id, p.share_amount) for p in tab_data.participants],
        db=db,
        currency=tab_data.currency,
        description=tab_data.description,
        category=tab_data.category,
        settlement_deadline=tab_data.settlement_deadline,
        penalty_rate_bps=tab_data.penalty_rate_bps,
        settlement_wallet=tab_data.settlement_wallet
    )
    return tab_detail(tab)


@router.get("", response_model=TabListResponse)
def get_my_tabs(
    status_filter: Optional[TabStatus] = Query(None, alias="status"),
    category: Optional[TabCategory] = None,
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """List tabs the current user created or participates in."""
    rows, total = services.tabs.get_user_tabs(
        current_user.id, db, status=status_filter, category=category, search=search, page=page, limit=limit
    )
    items = []
    for tab, participant in rows:
        base = TabResponse.model_validate(tab).model_dump()
        mine = TabParticipantResponse.model_validate(participant) if participant else None
        items.append(TabListItem(**base, my_participation=mine))
    return TabListResponse(items=items, total=total, page=page, limit=limit)


@router.get("/{tab_id}", response_model=TabDetailResponse)
def get_tab(
    tab_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Get a tab with its participants and payment summary."""
    return tab_detail(services.tabs.get_tab(current_user.id, tab_id, db))


@router.patch("/{tab_id}", response_model=TabDetailResponse)
def update_tab(
    tab_id: int,
    tab_update: TabUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Edit the title or description of an open tab (creator only)."""
    tab = services.tabs.update_tab(
        current_user.id, tab_id, db, title=tab_update.title, description=tab_update.description
    )
    return tab_detail(tab)


@router.delete("/{tab_id}")
def cancel_tab(
    tab_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Cancel an open tab (creator only)."""
    tab = services.tabs.cancel_tab(current_user.id, tab_id, db)
    return format_response({"tab_id": tab.id, "status": tab.status.value}, "Tab cancelled successfully")


@router.post("/{tab_id}/settle", response_model=TabParticipantResponse)
def settle_payment(
    tab_id: int,
    payment: SettlePaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Settle the current user's share with a ledger transaction."""
    return services.settlement.settle(tab_id, current_user.id, payment.tx_hash, payment.amount, db)


@router.post("/{tab_id}/verify-participation")
def verify_participation(
    tab_id: int,
    request: ParticipationVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Accept or decline a tab invitation with the emailed code."""
    participant = services.participation.verify_participation(
        current_user.id, tab_id, request.otp_code, request.accept, db
    )
    if participant is None:
        return format_response({"accepted": False, "participant": None}, "Tab participation declined")
    return format_response(
        {"accepted": True, "participant": TabParticipantResponse.model_validate(participant)},
        "Tab participation accepted"
    )


@router.post("/{tab_id}/resend-otp")
def resend_otp(
    tab_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Send a fresh participation code."""
    services.tabs.resend_otp(current_user.id, tab_id, db)
    return format_response({"tab_id": tab_id}, "OTP sent successfully")
