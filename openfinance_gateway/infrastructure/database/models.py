"""SQLAlchemy ORM models"""

from sqlalchemy import Column, Date, DateTime, Integer, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class DailyConnectionCredit(Base):
    """Per-user aggregator quota counter for one local calendar day"""

    __tablename__ = "daily_connection_credit"

    user_id = Column(Text, primary_key=True)
    credit_date = Column(Date, nullable=False)
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
