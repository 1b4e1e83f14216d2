"""
Current user and trust score routes.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from tabtrust.db.session import get_db
from tabtrust.models.user import User
from tabtrust.schemas.user import UserResponse, TrustScoreResponse, TrustTierResponse, SettlementHistoryResponse
from tabtrust.api.dependencies import get_current_user
from tabtrust.services.container import Services, get_services
from tabtrust.services.trust_service import get_trust_tier

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return current_user


@router.get("/me/trust", response_model=TrustScoreResponse)
def get_my_trust_score(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Trust score, tier and settlement history of the current user."""
    history = services.trust.get_history(current_user.id, db)
    return TrustScoreResponse(
        user_id=current_user.id,
        trust_score=current_user.trust_score,
        settlements_on_time=current_user.settlements_on_time,
        settlements_late=current_user.settlements_late,
        total_settlements=current_user.total_settlements,
        tier=TrustTierResponse(**get_trust_tier(current_user.trust_score)),
        history=[SettlementHistoryResponse.model_validate(h) for h in history]
    )
