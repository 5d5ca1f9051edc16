"""PhoneVault Main FastAPI App

Stores phone numbers encrypted by AWS KMS; plaintext never reaches the database.
Run with: phonevault serve   (or: uvicorn phonevault.main:app)
Access at: http://localhost:8080/docs

Startup order: settings -> database (connect + create table) -> KMS keys.
Any failure there stops the process before it takes traffic.
"""

from contextlib import asynccontextmanager
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from phonevault.config import Settings, load_settings
from phonevault.errors import PhoneVaultError
from phonevault.phone.router import router as phone_router
from phonevault.records.service import RecordService
from phonevault.records.store import RecordStore
from phonevault.security.kms_registry import KeyClientRegistry
from phonevault.utils.health_check import HealthChecker
from phonevault.utils.log_config import configure_logging
from phonevault.utils.metrics import get_metrics_text
from phonevault.utils.request_logging import RequestLoggingMiddleware

logger = structlog.get_logger()


def build_service(settings: Settings, client_factory: Optional[Callable] = None) -> RecordService:
    """Connect to the database and KMS, or raise

    Raises:
        ConfigurationError, DatabaseConnectionError, KeyServiceConnectionError
    """
    store = RecordStore.from_url(settings.sqlalchemy_url)
    store.ping()
    store.ensure_schema()
    logger.info("Database ready")

    registry = KeyClientRegistry.from_settings(settings, client_factory=client_factory)
    logger.info("KMS clients ready", purposes=[p.value for p in registry.purposes])
    return RecordService(registry, store)


def _validation_details(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PhoneVaultError)
    async def phonevault_error_handler(request: Request, exc: PhoneVaultError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.message, details=exc.details, status=exc.status_code)
        else:
            logger.warning("Request rejected", error=exc.message, details=exc.details, status=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        logger.warning("Invalid request body", details=details)
        return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": details})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    service: Optional[RecordService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the FastAPI app

    Args:
        service: Ready RecordService; when omitted it is built on startup from settings
        settings: Settings; when omitted they are loaded from the environment on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.record_service is None:
            loaded = app.state.settings or load_settings()
            configure_logging(loaded.log_level, loaded.log_format)
            app.state.settings = loaded
            app.state.request_timeout_seconds = loaded.request_timeout_seconds
            app.state.record_service = build_service(loaded)
        logger.info("PhoneVault ready")
        yield
        logger.info("Shutting down PhoneVault...")
        app.state.record_service.store.dispose()

    app = FastAPI(
        title="PhoneVault",
        description="Phone numbers encrypted at rest with AWS KMS",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.record_service = service
    app.state.request_timeout_seconds = (settings or Settings()).request_timeout_seconds

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(phone_router, prefix="/phone", tags=["Phone"])

    health_checker = HealthChecker()

    @app.get("/health")
    async def health_check():
        """Basic liveness check"""
        return await health_checker.liveness_check()

    @app.get("/health/live")
    async def health_live():
        """Kubernetes liveness probe"""
        return await health_checker.liveness_check()

    @app.get("/health/ready")
    async def health_ready(request: Request):
        """Kubernetes readiness probe"""
        return await health_checker.readiness_check(request.app.state.record_service)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint"""
        return get_metrics_text()

    return app


app = create_app()
