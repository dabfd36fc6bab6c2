from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from wastewatch.errors import InvalidStatusTransition, ReportNotFound
from wastewatch.models import Report, ReportStatus, User

ALLOWED_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset(
        {ReportStatus.INVESTIGATING, ReportStatus.RESOLVED, ReportStatus.VERIFIED}
    ),
    ReportStatus.INVESTIGATING: frozenset(
        {ReportStatus.RESOLVED, ReportStatus.VERIFIED}
    ),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.VERIFIED: frozenset(),
}

MAX_PAGE = 50


def get_report(db: Session, report_id: int) -> Report:
    report = db.get(Report, report_id)
    if report is None:
        raise ReportNotFound(report_id)
    return report


def list_reports(
    db: Session,
    *,
    user_id: int | None = None,
    status: ReportStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Report]:
    """Reports newest first, optionally filtered by owner and status."""
    limit = max(0, min(limit, MAX_PAGE))
    offset = max(0, offset)
    stmt = select(Report).order_by(Report.created_at.desc(), Report.id.desc())
    if user_id is not None:
        stmt = stmt.where(Report.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Report.status == status)
    return list(db.scalars(stmt.limit(limit).offset(offset)))


def change_status(db: Session, report_id: int, status: ReportStatus | str) -> Report:
    """Move a report along the moderation lifecycle.

    Raises ``ValueError`` for names outside :class:`ReportStatus` and
    :class:`InvalidStatusTransition` for moves the lifecycle forbids.
    """
    target = ReportStatus(status)
    report = get_report(db, report_id)
    current = ReportStatus(report.status)
    if target == current:
        return report
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)

    # conditional on the status we validated against
    result = db.execute(
        update(Report)
        .where(Report.id == report_id, Report.status == current)
        .values(status=target, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidStatusTransition(current.value, target.value)
    db.commit()
    db.refresh(report)
    return report


def add_vote(db: Session, report_id: int) -> int:
    """Increment the vote counter and return the new value."""
    votes = db.execute(
        update(Report)
        .where(Report.id == report_id)
        .values(votes=Report.votes + 1)
        .returning(Report.votes)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    if votes is None:
        db.rollback()
        raise ReportNotFound(report_id)
    db.commit()
    return votes


def get_user_points(db: Session, user_id: int) -> int | None:
    return db.execute(select(User.points).where(User.id == user_id)).scalar_one_or_none()


def count_pending(db: Session) -> int:
    return db.execute(
        select(func.count(Report.id)).where(Report.status == ReportStatus.PENDING)
    ).scalar_one()


__all__ = [
    "ALLOWED_TRANSITIONS",
    "get_report",
    "list_reports",
    "change_status",
    "add_vote",
    "get_user_points",
    "count_pending",
]
