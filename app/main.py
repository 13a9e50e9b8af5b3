"""Lightpoint API application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        f"Starting Lightpoint API ({settings.LIGHTPOINT_ENV})",
        extra={
            "analysis_model": settings.ANALYSIS_MODEL,
            "embedding_profile": settings.EMBEDDING_PROFILE,
            "rate_limit_enabled": settings.RATE_LIMIT_ENABLED,
        },
    )
    yield
    logger.info("Lightpoint API stopped")


app = FastAPI(
    title="Lightpoint Complaint Engine",
    description="HMRC complaint analysis, letter generation and knowledge base service",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    return JSONResponse(content={"status": "ok"}, status_code=200)


app.include_router(api_router, prefix="/v1")
