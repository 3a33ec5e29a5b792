"""Persisted side of the daily aggregator quota"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from openfinance_gateway.config import settings
from openfinance_gateway.domain import quota
from openfinance_gateway.domain.exceptions import QuotaExhaustedError
from openfinance_gateway.domain.models import DailyCreditRecord, QuotaState
from openfinance_gateway.infrastructure.database.repositories import CreditRepository
from openfinance_gateway.infrastructure.database.session import transaction
from openfinance_gateway.infrastructure.observability.logging import log_credit_consumed
from openfinance_gateway.infrastructure.observability.metrics import credits_consumed_counter
from openfinance_gateway.utils.date_utils import next_local_midnight, today_local

logger = logging.getLogger(__name__)


@dataclass
class QuotaSnapshot:
    state: QuotaState
    used_today: int
    remaining: int
    max_per_day: int
    resets_at: datetime


class QuotaManager:
    """
    Gate for aggregator-billed operations (new connection or re-sync).

    The database record is the only source of truth; nothing is cached here.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        max_per_day: Optional[int] = None,
        timezone: Optional[str] = None,
        paid_plans: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.max_per_day = max_per_day if max_per_day is not None else settings.max_daily_connections
        self.timezone = timezone or settings.user_timezone
        self.paid_plans = frozenset(paid_plans if paid_plans is not None else settings.paid_plans)
        self.clock = clock

    def today(self) -> date:
        return today_local(self.timezone, self.clock() if self.clock else None)

    def get_record(self, user_id: str) -> Optional[DailyCreditRecord]:
        with transaction(self.session_factory) as db:
            return CreditRepository(db).get_record(user_id)

    def is_eligible(self, plan: Optional[str]) -> bool:
        return plan in self.paid_plans

    def has_credit(self, user_id: str, plan: Optional[str]) -> bool:
        """Re-read the stored counter; callers check right before each billable action"""
        if not self.is_eligible(plan):
            return False
        record = self.get_record(user_id)
        return quota.has_credit(plan, record, self.max_per_day, self.today(), self.paid_plans)

    def snapshot(self, user_id: Optional[str], plan: Optional[str]) -> QuotaSnapshot:
        today = self.today()
        record = self.get_record(user_id) if user_id else None
        return QuotaSnapshot(
            state=quota.quota_state(user_id, plan, record, self.max_per_day, today, self.paid_plans),
            used_today=quota.effective_count_today(record, today),
            remaining=quota.remaining_credits(record, self.max_per_day, today),
            max_per_day=self.max_per_day,
            resets_at=next_local_midnight(self.timezone, self.clock() if self.clock else None),
        )

    def consume_credit(self, user_id: str, operation: str = "connect") -> int:
        """
        Atomically add one credit to today's counter and return the new count.

        The increment is a single UPDATE; when the user has no row yet the first
        credit is inserted, and losing that insert race to another session
        falls back to the UPDATE on a fresh transaction.
        """
        today = self.today()
        try:
            with transaction(self.session_factory) as db:
                repo = CreditRepository(db)
                count = repo.increment(user_id, today)
                if count is None:
                    count = repo.create_record(user_id, today)
        except IntegrityError:
            with transaction(self.session_factory) as db:
                count = CreditRepository(db).increment(user_id, today)

        credits_consumed_counter.labels(operation=operation).inc()
        log_credit_consumed(user_id, operation, count)
        return count

    def reserve_credit(self, user_id: str, plan: Optional[str], operation: str = "refresh") -> int:
        """
        Check and consume in one conditional UPDATE, for billable calls made
        before the aggregator is contacted. Concurrent callers can never push
        today's count past max_per_day.

        Raises:
            QuotaExhaustedError: plan not eligible or no credit left today
        """
        if not self.is_eligible(plan) or self.max_per_day < 1:
            raise QuotaExhaustedError(self.max_per_day)

        today = self.today()
        try:
            with transaction(self.session_factory) as db:
                repo = CreditRepository(db)
                count = repo.increment_below(user_id, today, self.max_per_day)
                if count is None:
                    # Either no row yet or capped; a capped row makes the insert collide
                    count = repo.create_record(user_id, today)
        except IntegrityError:
            with transaction(self.session_factory) as db:
                count = CreditRepository(db).increment_below(user_id, today, self.max_per_day)

        if count is None:
            raise QuotaExhaustedError(self.max_per_day)

        credits_consumed_counter.labels(operation=operation).inc()
        log_credit_consumed(user_id, operation, count)
        return count

    def release_credit(self, user_id: str, operation: str = "refresh") -> Optional[int]:
        """Return a reserved credit the aggregator was never billed for"""
        with transaction(self.session_factory) as db:
            count = CreditRepository(db).decrement(user_id, self.today())
        logger.info(
            "Credit released",
            extra={"user_id": user_id, "operation": operation, "count_today": count},
        )
        return count
