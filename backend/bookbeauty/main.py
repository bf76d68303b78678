# backend/bookbeauty/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .core.exceptions import DomainException
from .database import init_db
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import (
    bookings as bookings_v1,
    mollie_connect as mollie_connect_v1,
    payments as payments_v1,
    webhooks_mollie as webhooks_mollie_v1,
)
from .schemas.main_responses import HealthResponse

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment} (mollie_mode={settings.mollie_mode})")

    if settings.environment == "development" and not is_running_tests():
        init_db()

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Domain errors that escape a route keep their status and error code."""
    if exc.status_code >= 500:
        logger.error(
            "Unhandled domain error",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.message, "code": exc.code, "details": exc.details}},
    )


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(webhooks_mollie_v1.router, prefix="/webhooks/mollie")
api_v1.include_router(mollie_connect_v1.router, prefix="/mollie")
api_v1.include_router(bookings_v1.router)
app.include_router(api_v1)


@app.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Lightweight health check that doesn't hit the database"""
    return HealthResponse(
        status="healthy",
        service=API_TITLE,
        version=API_VERSION,
        environment=settings.environment,
        mollie_mode=settings.mollie_mode,
    )


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.content_type,
    )
