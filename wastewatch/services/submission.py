"""Report submission pipeline.

``SubmissionService.submit`` validates the upload, stores the image,
classifies it, persists the report and credits the points. Failures before
the report is committed abort the submission with nothing persisted; a
ledger failure afterwards is retried and, if still failing, left for
:func:`wastewatch.services.ledger.reconcile_pending_awards`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wastewatch import db as db_module
from wastewatch.config import Settings
from wastewatch.errors import LedgerError, StorageFailure, ValidationFailure
from wastewatch.metrics import (
    classifier_degraded_total,
    ledger_inconsistency_total,
    reports_pending,
    submission_latency_seconds,
    submissions_total,
)
from wastewatch.models import ErrorCode, Report, User
from wastewatch.services import storage
from wastewatch.services.classifier import ClassificationResult, ClassifierGateway
from wastewatch.services.images import ImageDecodeError, detect_format
from wastewatch.services.ledger import apply_award
from wastewatch.services.points import points_for
from wastewatch.services.report_builder import (
    DEFAULT_CATEGORY,
    ReportValidationError,
    build_report,
)

logger = logging.getLogger(__name__)

MAX_TITLE = 200
MAX_LOCATION = 255
MAX_CATEGORY = 64

StoreFn = Callable[[int, bytes, "str | None", str], Awaitable[str]]
DiscardFn = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class SubmissionRequest:
    user_id: int
    image: bytes
    mime_type: str
    title: str
    location: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    filename: str | None = None


@dataclass(frozen=True)
class SubmissionResult:
    report: Report
    classification: ClassificationResult
    points_awarded: int
    # None while the award waits for reconciliation
    points_total: int | None


def _mime(value: str | None) -> str:
    return (value or "").split(";", 1)[0].strip().lower()


class SubmissionService:
    def __init__(
        self,
        settings: Settings,
        classifier: ClassifierGateway | None = None,
        *,
        session_factory: Callable[[], Session] | None = None,
        store: StoreFn | None = None,
        discard: DiscardFn | None = None,
    ):
        self._settings = settings
        self._classifier = classifier or ClassifierGateway(settings)
        self._session_factory = session_factory
        self._store = store or storage.store_image
        self._discard = discard or storage.delete_image

    @property
    def classifier(self) -> ClassifierGateway:
        return self._classifier

    def _session(self) -> Session:
        factory = self._session_factory or db_module.SessionLocal
        return factory()

    def _validate(self, request: SubmissionRequest) -> None:
        missing = []
        if request.user_id is None:
            missing.append("user_id")
        for name in ("title", "location"):
            if not (getattr(request, name) or "").strip():
                missing.append(name)
        if not request.image:
            missing.append("image")
        if missing:
            raise ValidationFailure(f"missing required fields: {', '.join(missing)}")

        if len(request.title.strip()) > MAX_TITLE:
            raise ValidationFailure("title too long")
        if len(request.location.strip()) > MAX_LOCATION:
            raise ValidationFailure("location too long")
        if len((request.category or "").strip()) > MAX_CATEGORY:
            raise ValidationFailure("category too long")
        if len(request.image) > self._settings.max_image_bytes:
            raise ValidationFailure("image too large", code=ErrorCode.IMAGE_TOO_LARGE)
        if _mime(request.mime_type) not in self._settings.allowed_mime_types:
            raise ValidationFailure(
                "unsupported image type", code=ErrorCode.UNSUPPORTED_MEDIA
            )
        try:
            detect_format(request.image, self._settings.max_image_pixels)
        except ImageDecodeError as exc:
            raise ValidationFailure(
                "image is not decodable", code=ErrorCode.UNSUPPORTED_MEDIA
            ) from exc

    def _load_username(self, user_id: int) -> str:
        with self._session() as db:
            username = db.execute(
                select(User.username).where(User.id == user_id)
            ).scalar_one_or_none()
        if username is None:
            raise ValidationFailure("unknown user", code=ErrorCode.USER_NOT_FOUND)
        return username

    def _persist(self, report: Report) -> Report:
        with self._session() as db:
            # keep the flushed values; nothing touches the database after commit
            db.expire_on_commit = False
            db.add(report)
            db.commit()
        return report

    async def _discard_image(self, image_ref: str) -> None:
        if not await self._discard(image_ref):
            logger.warning("Orphaned image %s left in storage", image_ref)

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._validate, request)
            username = await asyncio.to_thread(self._load_username, request.user_id)
        except ValidationFailure:
            submissions_total.labels(outcome="invalid").inc()
            raise

        try:
            image_ref = await self._store(
                request.user_id, request.image, request.filename, _mime(request.mime_type)
            )
            # the rest runs to completion even if the caller goes away
            result = await asyncio.shield(self._complete(request, username, image_ref))
        except StorageFailure:
            submissions_total.labels(outcome="storage_failed").inc()
            raise
        submissions_total.labels(outcome="ok").inc()
        submission_latency_seconds.observe(time.perf_counter() - start)
        return result

    async def _complete(
        self, request: SubmissionRequest, username: str, image_ref: str
    ) -> SubmissionResult:
        classification = await self._classifier.classify(
            request.image, _mime(request.mime_type)
        )
        if classification.degraded:
            classifier_degraded_total.labels(reason=classification.failure_reason).inc()
            logger.warning(
                "Classification degraded for user %s: %s",
                request.user_id,
                classification.failure_reason,
            )
        points = points_for(classification.label)

        try:
            report = build_report(request, classification, points, image_ref, username)
        except ReportValidationError as exc:
            await self._discard_image(image_ref)
            raise ValidationFailure(str(exc)) from exc

        try:
            report = await asyncio.to_thread(self._persist, report)
        except SQLAlchemyError as exc:
            logger.exception("Report persistence failed for user %s", request.user_id)
            await self._discard_image(image_ref)
            raise StorageFailure("report could not be saved") from exc
        reports_pending.inc()

        total = await self._award(request.user_id, report.id, points)
        return SubmissionResult(
            report=report,
            classification=classification,
            points_awarded=points,
            points_total=total,
        )

    async def _award(self, user_id: int, report_id: int, points: int) -> int | None:
        attempts = max(1, self._settings.ledger_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(
                    apply_award,
                    user_id=user_id,
                    report_id=report_id,
                    amount=points,
                    session_factory=self._session_factory,
                )
            except (LedgerError, SQLAlchemyError) as exc:
                if attempt >= attempts:
                    ledger_inconsistency_total.inc()
                    logger.warning(
                        "Award of %d points for report %s (user %s) left for reconciliation: %s",
                        points,
                        report_id,
                        user_id,
                        exc,
                    )
                    return None
                await asyncio.sleep(self._settings.ledger_backoff_seconds * attempt)
        return None


__all__ = ["SubmissionRequest", "SubmissionResult", "SubmissionService"]
