"""
Outreach Stats API 앱

로컬 스냅샷 기반 통계 라우터를 FastAPI 앱으로 구성.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from outreach_stats.config import settings
from outreach_stats.router import router as stats_router
from outreach_stats.store import get_store, reset_store

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("outreach_stats")


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_store()
    logger.info("%s started (snapshot=%s)", settings.APP_NAME, settings.STATS_DB_PATH)
    yield
    reset_store()


app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)
app.include_router(stats_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME}
