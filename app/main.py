from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI

from app.config import get_settings
from app.db import SessionLocal
from app.logging_config import RequestIdMiddleware, configure_logging
from app.routes.api import api_router
from app.services.autopay_service import run_scheduled_autopay_once_per_day_in_session_if_ready

configure_logging(get_settings().log_level)
logger = logging.getLogger(__name__)


def _run_startup_autopay() -> None:
    with SessionLocal() as session:
        scheduled = run_scheduled_autopay_once_per_day_in_session_if_ready(
            session,
            today=date.today(),
            window_days=get_settings().autopay_window_days,
        )
    if scheduled is None:
        logger.info("Scheduled autopay startup run skipped (schema not ready)")
    elif scheduled.ran:
        logger.info(
            "Scheduled autopay startup run completed households=%s payments=%s",
            len(scheduled.runs),
            sum(run.success_count for run in scheduled.runs),
        )
    else:
        logger.info("Scheduled autopay startup run skipped (already ran today)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting BillLedger application")
    if get_settings().run_startup_jobs:
        _run_startup_autopay()
    else:
        logger.info("Startup jobs disabled for this process")
    yield
    logger.info("Shutting down BillLedger application")


def create_app() -> FastAPI:
    app = FastAPI(title="BillLedger", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
