from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError

from wastewatch.config import Settings
from wastewatch.controllers import v1
from wastewatch.controllers.reports import close_submission_service
from wastewatch import db as db_module
from wastewatch.db import init_db
from wastewatch.logger import setup_logging
from wastewatch.metrics import reports_pending
from wastewatch.services.ledger import reconcile_pending_awards
from wastewatch.services.reports import count_pending
from wastewatch.services.storage import close_client, init_storage

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


def _count_pending_reports() -> int:
    with db_module.SessionLocal() as db:
        return count_pending(db)


async def _reconcile_forever(interval: int, batch_size: int) -> None:
    """Periodically credit awards whose ledger update did not complete."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(reconcile_pending_awards, batch_size)
        except SQLAlchemyError:
            logger.exception("Points reconciliation run failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_storage(settings)
    await asyncio.to_thread(init_db, settings)
    reports_pending.set(await asyncio.to_thread(_count_pending_reports))
    reconciler: asyncio.Task | None = None
    if settings.reconcile_interval_seconds > 0:
        reconciler = asyncio.create_task(
            _reconcile_forever(
                settings.reconcile_interval_seconds, settings.reconcile_batch_size
            )
        )
    yield
    if reconciler is not None:
        reconciler.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reconciler
    close_submission_service()
    await close_client()


app = FastAPI(
    title="WasteWatch API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)

Instrumentator().instrument(app).expose(app)
