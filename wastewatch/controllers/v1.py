from fastapi import APIRouter

from . import reports, users

router = APIRouter(prefix="/v1")
router.include_router(reports.router)
router.include_router(users.router)
