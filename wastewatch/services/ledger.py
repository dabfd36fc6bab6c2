"""Points ledger: applies report awards to the users' running totals.

Every award is written together with a ``point_awards`` row keyed by the
report id. The row doubles as an idempotency key, so retrying an award (or
running reconciliation concurrently with a submission) never double counts.
Totals change only through a single atomic ``UPDATE ... SET points = points
+ :amount``, which keeps concurrent writers from different processes safe.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wastewatch import db as db_module
from wastewatch.errors import LedgerError
from wastewatch.metrics import ledger_reconciled_total, points_awarded_total
from wastewatch.models import PointAward, Report, User

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _current_total(db: Session, user_id: int) -> int:
    total = db.execute(select(User.points).where(User.id == user_id)).scalar_one_or_none()
    if total is None:
        raise LedgerError(f"user {user_id} not found")
    return total


def _apply(
    factory: SessionFactory, user_id: int, report_id: int, amount: int
) -> tuple[int, bool]:
    with factory() as db:
        db.add(PointAward(report_id=report_id, user_id=user_id, amount=amount))
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            exists = db.execute(
                select(PointAward.id).where(PointAward.report_id == report_id)
            ).scalar_one_or_none()
            if exists is None:
                raise LedgerError(f"cannot record award for report {report_id}") from exc
            logger.info("Award for report %s already applied", report_id)
            return _current_total(db, user_id), False

        stmt = (
            update(User)
            .where(User.id == user_id, User.points >= 0)
            .values(points=User.points + amount)
            .returning(User.points)
            .execution_options(synchronize_session=False)
        )
        try:
            total = db.execute(stmt).scalar_one_or_none()
        except IntegrityError as exc:
            db.rollback()
            raise LedgerError(f"points constraint violated for user {user_id}") from exc
        if total is None:
            db.rollback()
            raise LedgerError(f"user {user_id} missing or has a negative total")
        db.commit()
    points_awarded_total.inc(amount)
    return total, True


def apply_award(
    *,
    user_id: int,
    report_id: int,
    amount: int,
    session_factory: SessionFactory | None = None,
) -> int:
    """Credit ``amount`` points for ``report_id`` and return the new total.

    Re-applying the award of a report that is already on the ledger is a
    no-op returning the current total.
    """
    if amount < 0:
        raise ValueError("award must be non-negative")
    factory = session_factory or db_module.SessionLocal
    total, _ = _apply(factory, user_id, report_id, amount)
    return total


def _unapplied(db: Session, limit: int, user_id: int | None = None) -> list:
    stmt = (
        select(Report.id, Report.user_id, Report.points)
        .outerjoin(PointAward, PointAward.report_id == Report.id)
        .where(PointAward.id.is_(None))
        .order_by(Report.created_at, Report.id)
        .limit(limit)
    )
    if user_id is not None:
        stmt = stmt.where(Report.user_id == user_id)
    return list(db.execute(stmt).all())


def reconcile_pending_awards(
    limit: int = 100,
    *,
    user_id: int | None = None,
    session_factory: SessionFactory | None = None,
) -> int:
    """Apply awards of reports missing from the ledger; returns how many."""
    factory = session_factory or db_module.SessionLocal
    with factory() as db:
        rows = _unapplied(db, limit, user_id)

    applied = 0
    for report_id, owner_id, points in rows:
        try:
            _, fresh = _apply(factory, owner_id, report_id, points)
        except LedgerError as exc:
            logger.warning("Reconciliation of report %s failed: %s", report_id, exc)
            continue
        if fresh:
            applied += 1
            ledger_reconciled_total.inc()
    if applied:
        logger.info("Reconciled %d pending point awards", applied)
    return applied


def _lock_user(user_id: int):
    return select(User.id).where(User.id == user_id).with_for_update()


def recompute_user_total(
    user_id: int, *, session_factory: SessionFactory | None = None
) -> int:
    """Rebuild ``users.points`` from the ledger after applying missing awards."""
    factory = session_factory or db_module.SessionLocal
    while reconcile_pending_awards(
        limit=500, user_id=user_id, session_factory=factory
    ):
        pass

    with factory() as db:
        # concurrent apply_award calls block on the user row until commit;
        # SQLite has no row locks and runs the UPDATE under its write lock
        if db.get_bind().dialect.name != "sqlite":
            if db.execute(_lock_user(user_id)).scalar_one_or_none() is None:
                db.rollback()
                raise LedgerError(f"user {user_id} not found")
        ledger_sum = (
            select(func.coalesce(func.sum(PointAward.amount), 0))
            .where(PointAward.user_id == user_id)
            .scalar_subquery()
        )
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(points=ledger_sum)
            .returning(User.points)
            .execution_options(synchronize_session=False)
        )
        total = db.execute(stmt).scalar_one_or_none()
        if total is None:
            db.rollback()
            raise LedgerError(f"user {user_id} not found")
        db.commit()
    return total


__all__ = [
    "apply_award",
    "reconcile_pending_awards",
    "recompute_user_total",
]
