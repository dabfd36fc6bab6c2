from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer

from .base import Base


class PointAward(Base):
    """Ledger row recording that a report's award reached the user's total.

    ``report_id`` is unique so the same award can never be applied twice.
    """

    __tablename__ = "point_awards"

    id = Column(Integer, primary_key=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False, unique=True)
    user_id = Column(Integer, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
