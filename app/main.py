"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.router import api_router
from app.dependencies import close_service
from app.models.database import close_db
from app.observability.logging import setup_logging
from app.schemas.api import BoundaryResponse

logger = structlog.get_logger(__name__)


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FastApiIntegration()],
        release=f"{settings.APP_NAME}@{settings.APP_VERSION}",
        traces_sample_rate=0.1,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.SENTRY_DSN:
        _init_sentry()
    logger.info(
        "startup",
        version=settings.APP_VERSION,
        oracle_enabled=bool(settings.ORACLE_API_KEY),
        lookup_enabled=settings.ENABLE_SECURITY_LOOKUP,
        metrics_enabled=settings.PROMETHEUS_ENABLED,
    )

    yield

    await close_service()
    await close_db()
    logger.info("shutdown")


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies get the same envelope as pipeline failures
    body = BoundaryResponse(success=False, error=str(exc.errors()), error_code="INVALID_REQUEST")
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump(mode="json"))


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
    body = BoundaryResponse(success=False, error="Internal error", error_code="INTERNAL_ERROR")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(mode="json"))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Asset Ingestion & Reconciliation",
        description="Turns brokerage, bank and fund statements into classified, deduplicated holdings snapshots.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["X-API-Key", "X-User-Id", "Content-Type"],
    )
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(Exception, _unhandled)

    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        app.mount("/metrics", make_asgi_app())

    app.include_router(api_router)
    return app


app = create_app()
