"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from redialer.calls.business_hours import BusinessHours
from redialer.calls.config import (
    get_business_hours_config,
    get_governor_config,
    get_ledger_config,
    get_redial_policy,
)
from redialer.calls.governor import RateGovernor
from redialer.calls.ledger import AttemptLedger
from redialer.calls.registry import PendingAttemptRegistry
from redialer.calls.scheduler import RedialScheduler
from redialer.config import get_settings
from redialer.crm.client import CrmClient
from redialer.crm.config import get_crm_config
from redialer.messaging.config import get_sms_limit_config
from redialer.messaging.sms_limiter import SmsRateLimiter
from redialer.prospects.repository import (
    PersistenceError,
    RecordNotFoundError,
    SqlProspectRecordRepository,
)
from redialer.prospects.router import router as prospects_router
from redialer.shared.database import get_database_manager
from redialer.shared.logging import get_logger, setup_logging
from redialer.telephony.config import get_telephony_config
from redialer.telephony.factory import get_voice_provider
from redialer.telephony.webhooks.router import router as voice_webhooks_router

# Register ORM tables before create_all
import redialer.messaging.models  # noqa: F401
import redialer.prospects.models  # noqa: F401

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    logger.info("Application starting", extra={"env": settings.app_env})

    db = get_database_manager()
    await db.create_all()

    ledger_config = get_ledger_config()
    provider = get_voice_provider()
    crm = CrmClient(get_crm_config())
    scheduler = RedialScheduler(
        repository=SqlProspectRecordRepository(db.session_factory, ledger_config.timezone),
        provider=provider,
        ledger=AttemptLedger(ledger_config),
        governor=RateGovernor(get_governor_config()),
        registry=PendingAttemptRegistry(),
        policy=get_redial_policy(),
        business_hours=BusinessHours(get_business_hours_config()),
        crm=crm,
        callback_url=get_telephony_config().get_webhook_url(),
    )
    app.state.voice_provider = provider
    app.state.scheduler = scheduler
    app.state.sms_limiter = SmsRateLimiter(db.session_factory, get_sms_limit_config())

    await scheduler.restore_ledger()
    if settings.scheduler_enabled:
        await scheduler.start(settings.scheduler_interval_seconds)
    else:
        logger.info("Redial driver disabled; cycles run only on demand")

    yield

    logger.info("Shutting down application")
    await scheduler.stop()
    await crm.close()
    close = getattr(provider, "close", None)
    if close is not None:
        await close()
    await db.close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Redialer API",
        description="Lead redial scheduling",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.exception_handler(RecordNotFoundError)
    async def _not_found(_: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure", extra={"error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage unavailable"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.include_router(voice_webhooks_router)
    app.include_router(prospects_router)

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        body: dict[str, Any] = {"status": "healthy"}
        scheduler = getattr(request.app.state, "scheduler", None)
        if scheduler is not None:
            body["scheduler"] = await scheduler.stats()
        return body

    return app


app = create_app()
