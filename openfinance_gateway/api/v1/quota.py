"""GET /v1/quota - Daily bank connection quota for a user"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from openfinance_gateway.api.dependencies import get_quota_manager
from openfinance_gateway.api.v1.schemas import QuotaResponse
from openfinance_gateway.services.quota_manager import QuotaManager

router = APIRouter()


@router.get("/quota", response_model=QuotaResponse)
def get_quota(
    user_id: Optional[str] = Query(None, description="User identifier; absent while auth is loading"),
    plan: Optional[str] = Query(None, description="Subscription plan"),
    quota: QuotaManager = Depends(get_quota_manager),
):
    """
    Quota state for the connect/re-sync buttons.

    Returns:
        loading (no user yet), exhausted, or available, plus usage and the
        local-midnight reset instant
    """
    snapshot = quota.snapshot(user_id, plan)
    return QuotaResponse(
        user_id=user_id,
        state=snapshot.state.value,
        used_today=snapshot.used_today,
        remaining=snapshot.remaining,
        max_per_day=snapshot.max_per_day,
        resets_at=snapshot.resets_at,
    )
