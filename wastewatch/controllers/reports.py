from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wastewatch import db as db_module
from wastewatch.config import Settings
from wastewatch.dependencies import ErrorResponse, rate_limit, require_moderator
from wastewatch.errors import (
    InvalidStatusTransition,
    ReportNotFound,
    StorageFailure,
    ValidationFailure,
)
from wastewatch.metrics import reports_pending
from wastewatch.models import ErrorCode, Report, ReportStatus
from wastewatch.services import reports as report_queries
from wastewatch.services.report_builder import DEFAULT_CATEGORY
from wastewatch.services.storage import get_public_url
from wastewatch.services.submission import SubmissionRequest, SubmissionService

settings = Settings()
logger = logging.getLogger(__name__)

OPTIONAL_FILE = File(None)

router = APIRouter()

_service: SubmissionService | None = None


def get_submission_service() -> SubmissionService:
    global _service
    if _service is None:
        _service = SubmissionService(settings)
    return _service


def close_submission_service() -> None:
    global _service
    if _service is not None:
        _service.classifier.close()
    _service = None


_VALIDATION_STATUS = {
    ErrorCode.IMAGE_TOO_LARGE: 413,
    ErrorCode.UNSUPPORTED_MEDIA: 415,
    ErrorCode.USER_NOT_FOUND: 404,
}


class ReportOut(BaseModel):
    id: int
    user_id: int
    username: str
    title: str
    description: str
    location: str
    category: str
    image_url: str
    label: str
    annotation: str
    points: int
    status: ReportStatus
    votes: int
    created_at: datetime
    updated_at: datetime


class ClassificationOut(BaseModel):
    label: str
    annotation: str
    points: int


class SubmitResponse(BaseModel):
    report: ReportOut
    classification: ClassificationOut
    points_total: int | None = None


class StatusUpdate(BaseModel):
    status: ReportStatus


class VoteResponse(BaseModel):
    id: int
    votes: int


def _report_out(report: Report) -> ReportOut:
    return ReportOut(
        id=report.id,
        user_id=report.user_id,
        username=report.username,
        title=report.title,
        description=report.description or "",
        location=report.location,
        category=report.category,
        image_url=get_public_url(report.image_ref),
        label=report.label,
        annotation=report.annotation or "",
        points=report.points,
        status=report.status,
        votes=report.votes,
        created_at=report.created_at,
        updated_at=report.updated_at,
    )


def _error(status_code: int, code: ErrorCode, message: str) -> JSONResponse:
    err = ErrorResponse(code=code.value, message=message)
    return JSONResponse(status_code=status_code, content=err.model_dump())


@router.post(
    "/reports",
    status_code=201,
    response_model=SubmitResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def submit_report(
    user_id: int = Depends(rate_limit),
    image: UploadFile | None = OPTIONAL_FILE,
    title: str | None = Form(None),
    location: str | None = Form(None),
    description: str | None = Form(None),
    category: str | None = Form(None),
    service: SubmissionService = Depends(get_submission_service),
):
    limit = settings.max_image_bytes
    contents = b""
    mime_type = ""
    filename = None
    if image is not None:
        contents = await image.read(limit + 1)
        mime_type = image.content_type or ""
        filename = image.filename
        if len(contents) > limit:
            return _error(413, ErrorCode.IMAGE_TOO_LARGE, "image too large")

    request = SubmissionRequest(
        user_id=user_id,
        image=contents,
        mime_type=mime_type,
        title=title or "",
        location=location or "",
        description=description or "",
        category=category or DEFAULT_CATEGORY,
        filename=filename,
    )
    try:
        result = await service.submit(request)
    except ValidationFailure as exc:
        return _error(_VALIDATION_STATUS.get(exc.code, 400), exc.code, exc.message)
    except StorageFailure as exc:
        return _error(503, exc.code, "report could not be stored, try again later")

    return SubmitResponse(
        report=_report_out(result.report),
        classification=ClassificationOut(
            label=result.classification.label.value,
            annotation=result.classification.annotation,
            points=result.points_awarded,
        ),
        points_total=result.points_total,
    )


@router.get("/reports", response_model=list[ReportOut])
async def list_reports(
    status: ReportStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    user_id: int = Depends(rate_limit),
):
    def _db_call() -> list[ReportOut]:
        with db_module.SessionLocal() as db:
            rows = report_queries.list_reports(
                db, status=status, limit=limit, offset=offset
            )
            return [_report_out(r) for r in rows]

    return await asyncio.to_thread(_db_call)


@router.get("/reports/mine", response_model=list[ReportOut])
async def list_my_reports(
    status: ReportStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    user_id: int = Depends(rate_limit),
):
    def _db_call() -> list[ReportOut]:
        with db_module.SessionLocal() as db:
            rows = report_queries.list_reports(
                db, user_id=user_id, status=status, limit=limit, offset=offset
            )
            return [_report_out(r) for r in rows]

    return await asyncio.to_thread(_db_call)


@router.get(
    "/reports/{report_id}",
    response_model=ReportOut,
    responses={404: {"model": ErrorResponse}},
)
async def get_report(report_id: int, user_id: int = Depends(rate_limit)):
    def _db_call() -> ReportOut:
        with db_module.SessionLocal() as db:
            return _report_out(report_queries.get_report(db, report_id))

    try:
        return await asyncio.to_thread(_db_call)
    except ReportNotFound:
        return _error(404, ErrorCode.NOT_FOUND, "report not found")


@router.patch(
    "/reports/{report_id}/status",
    response_model=ReportOut,
    dependencies=[Depends(require_moderator)],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_status(
    report_id: int, body: StatusUpdate, user_id: int = Depends(rate_limit)
):
    def _db_call() -> tuple[ReportOut, bool]:
        with db_module.SessionLocal() as db:
            before = report_queries.get_report(db, report_id).status
            report = report_queries.change_status(db, report_id, body.status)
            left_pending = (
                before == ReportStatus.PENDING and report.status != ReportStatus.PENDING
            )
            return _report_out(report), left_pending

    try:
        out, left_pending = await asyncio.to_thread(_db_call)
    except ReportNotFound:
        return _error(404, ErrorCode.NOT_FOUND, "report not found")
    except InvalidStatusTransition as exc:
        return _error(409, ErrorCode.INVALID_TRANSITION, str(exc))
    if left_pending:
        reports_pending.dec()
    logger.info("Report %s moved to %s by moderator", report_id, out.status.value)
    return out


@router.post(
    "/reports/{report_id}/votes",
    response_model=VoteResponse,
    responses={404: {"model": ErrorResponse}},
)
async def vote_report(report_id: int, user_id: int = Depends(rate_limit)):
    def _db_call() -> int:
        with db_module.SessionLocal() as db:
            return report_queries.add_vote(db, report_id)

    try:
        votes = await asyncio.to_thread(_db_call)
    except ReportNotFound:
        return _error(404, ErrorCode.NOT_FOUND, "report not found")
    return VoteResponse(id=report_id, votes=votes)
