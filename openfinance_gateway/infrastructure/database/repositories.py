"""Data access layer for quota records"""

from datetime import date
from typing import Optional
from sqlalchemy import case, or_, update
from sqlalchemy.orm import Session
from openfinance_gateway.infrastructure.database.models import DailyConnectionCredit
from openfinance_gateway.domain.models import DailyCreditRecord


class CreditRepository:
    """Repository for per-user daily connection credits"""

    def __init__(self, db: Session):
        self.db = db

    def get_record(self, user_id: str) -> Optional[DailyCreditRecord]:
        """Fetch the stored record, whatever day it was written"""
        row = self.db.get(DailyConnectionCredit, user_id)
        if row is None:
            return None
        return DailyCreditRecord(date=row.credit_date.isoformat(), count=row.count)

    def increment(self, user_id: str, today: date) -> Optional[int]:
        """
        Atomically bump today's counter in a single UPDATE.

        The CASE reads the row's current credit_date, so a record left over from
        an earlier day restarts at 1 instead of adding to a stale count.

        Returns:
            New count, or None when the user has no row yet
        """
        stmt = (
            update(DailyConnectionCredit)
            .where(DailyConnectionCredit.user_id == user_id)
            .values(
                count=case(
                    (DailyConnectionCredit.credit_date == today, DailyConnectionCredit.count + 1),
                    else_=1,
                ),
                credit_date=today,
            )
            .returning(DailyConnectionCredit.count)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_record(self, user_id: str, today: date) -> int:
        """Insert the first credit for a user; collides with concurrent inserts via the primary key"""
        self.db.add(DailyConnectionCredit(user_id=user_id, credit_date=today, count=1))
        self.db.flush()
        return 1

    def increment_below(self, user_id: str, today: date, max_per_day: int) -> Optional[int]:
        """
        Same single UPDATE as increment, guarded by the cap: a row already at
        max_per_day for today matches nothing and is left untouched.

        Returns:
            New count, or None when the user has no row or today's cap is reached
        """
        stmt = (
            update(DailyConnectionCredit)
            .where(
                DailyConnectionCredit.user_id == user_id,
                or_(
                    DailyConnectionCredit.credit_date != today,
                    DailyConnectionCredit.count < max_per_day,
                ),
            )
            .values(
                count=case(
                    (DailyConnectionCredit.credit_date == today, DailyConnectionCredit.count + 1),
                    else_=1,
                ),
                credit_date=today,
            )
            .returning(DailyConnectionCredit.count)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def decrement(self, user_id: str, today: date) -> Optional[int]:
        """Give back one of today's credits; a record from another day is left alone"""
        stmt = (
            update(DailyConnectionCredit)
            .where(
                DailyConnectionCredit.user_id == user_id,
                DailyConnectionCredit.credit_date == today,
                DailyConnectionCredit.count > 0,
            )
            .values(count=DailyConnectionCredit.count - 1)
            .returning(DailyConnectionCredit.count)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).scalar_one_or_none()
