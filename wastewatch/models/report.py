from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum

from wastewatch.models.base import Base


class ReportStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    VERIFIED = "verified"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Report(Base):
    """Citizen-submitted waste issue."""

    __tablename__ = "reports"
    __table_args__ = (
        Index("ix_reports_user_created", "user_id", "created_at"),
        Index("ix_reports_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    username = Column(String(64), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    location = Column(String(255), nullable=False)
    category = Column(String(64), nullable=False, default="general")
    image_ref = Column(String, nullable=False)
    label = Column(String(32), nullable=False, default="unknown")
    annotation = Column(String(32), nullable=False, default="")
    classifier_raw = Column(Text)
    points = Column(Integer, nullable=False, default=0)
    status = Column(
        SAEnum(
            ReportStatus,
            name="report_status",
            values_callable=lambda enum: [item.value for item in enum],
        ),
        nullable=False,
        default=ReportStatus.PENDING,
        server_default=ReportStatus.PENDING.value,
    )
    votes = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


__all__ = ["Report", "ReportStatus"]
