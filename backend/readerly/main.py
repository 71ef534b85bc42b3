# readerly/main.py
from __future__ import annotations

import logging
from pathlib import Path
from fastapi import FastAPI
from dotenv import load_dotenv

from readerly.core.config import settings
from readerly.core.logging import configure_logging
from readerly.api.routes_feeds import router as feeds_router
from readerly.workers.jobs import start_scheduler, stop_scheduler


BACKEND_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=BACKEND_ROOT / ".env", override=False)

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{settings.app_name} - feed fetcher")

app.include_router(feeds_router, prefix="/feeds", tags=["feeds"])


@app.on_event("startup")
def on_startup():
    # No dejamos caer el backend por temas de DB/scheduler
    try:
        start_scheduler()
    except Exception:
        logger.exception("Scheduler no pudo iniciar (no crítico)")


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler()


@app.get("/health")
def health_check():
    return {"status": "ok", "version": "0.1.0"}
