from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wastewatch import db as db_module
from wastewatch.dependencies import ErrorResponse, rate_limit
from wastewatch.models import ErrorCode
from wastewatch.services.reports import get_user_points

router = APIRouter()


class PointsResponse(BaseModel):
    user_id: int
    points: int


@router.get(
    "/users/me/points",
    response_model=PointsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def my_points(user_id: int = Depends(rate_limit)):
    def _db_call() -> int | None:
        with db_module.SessionLocal() as db:
            return get_user_points(db, user_id)

    points = await asyncio.to_thread(_db_call)
    if points is None:
        err = ErrorResponse(code=ErrorCode.USER_NOT_FOUND.value, message="unknown user")
        return JSONResponse(status_code=404, content=err.model_dump())
    return PointsResponse(user_id=user_id, points=points)
