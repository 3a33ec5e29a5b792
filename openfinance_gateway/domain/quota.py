"""Daily aggregator quota rules shared by new connections and re-syncs"""

from datetime import date
from typing import Iterable, Optional

from openfinance_gateway.domain.models import DailyCreditRecord, QuotaState


def effective_count_today(record: Optional[DailyCreditRecord], today: date) -> int:
    """
    Credits used today.

    A record stamped with any other day counts as zero: "never used" and
    "used up yesterday" both mean the full quota is available.
    """
    if record is None or record.date != today.isoformat():
        return 0
    return max(record.count, 0)


def has_credit(
    plan: Optional[str],
    record: Optional[DailyCreditRecord],
    max_per_day: int,
    today: date,
    paid_plans: Iterable[str],
) -> bool:
    """Starter (unpaid) plans never reach the aggregator; paid plans are capped per local day"""
    if plan not in set(paid_plans):
        return False
    return effective_count_today(record, today) < max_per_day


def remaining_credits(record: Optional[DailyCreditRecord], max_per_day: int, today: date) -> int:
    return max(max_per_day - effective_count_today(record, today), 0)


def quota_state(
    user_id: Optional[str],
    plan: Optional[str],
    record: Optional[DailyCreditRecord],
    max_per_day: int,
    today: date,
    paid_plans: Iterable[str],
) -> QuotaState:
    if not user_id:
        return QuotaState.LOADING
    if has_credit(plan, record, max_per_day, today, paid_plans):
        return QuotaState.AVAILABLE
    return QuotaState.EXHAUSTED
