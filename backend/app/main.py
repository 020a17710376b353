"""
AfriMobile KYC - Main Application Entry Point

This module builds the FastAPI application with all necessary middleware,
monitoring tools, and route configurations. It sets up:
- Structured JSON logging with correlation IDs
- Sentry error tracking (when a DSN is configured)
- Prometheus metrics and instrumentation
- Security headers and request logging
- The database engine and user repository
- The Smile ID gateway, link service, state projector and webhook ingestor

Run with ``uvicorn app.main:create_application --factory``.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.api.deps import KYCServices
from app.api.v1.routes import kyc_router
from app.core.error_handler import register_exception_handlers
from app.core.logging import get_logger, setup_logging
from app.core.middleware import CorrelationIDMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.core.settings import AppSettings, get_settings
from app.crud.user import UserRepository
from app.db import check_db_connection, create_db_engine, create_session_factory, init_db
from app.modules.kyc.gateway import SmileIDGateway
from app.modules.kyc.links import LinkService
from app.modules.kyc.projector import KYCStateProjector
from app.modules.kyc.webhook import WebhookIngestor
from app.monitoring.prometheus import setup_metrics

# Initialize logging
logger = get_logger(__name__)


def _init_sentry(settings: AppSettings) -> None:
    if not settings.logging.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=settings.logging.SENTRY_DSN,
        environment=settings.app.ENVIRONMENT,
        traces_sample_rate=settings.logging.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration()
        ]
    )
    logger.info("Sentry initialized", extra={"environment": settings.app.ENVIRONMENT})


def build_services(
    settings: AppSettings,
    gateway: Optional[SmileIDGateway] = None,
    user_repository: Optional[UserRepository] = None
) -> KYCServices:
    """
    Wire the KYC collaborators.

    Raises:
        ConfigurationError: If Smile ID credentials are missing
    """
    engine = None
    if user_repository is None:
        engine = create_db_engine(settings)
        user_repository = UserRepository(create_session_factory(engine))

    gateway = gateway or SmileIDGateway.from_config(settings.smile)
    projector = KYCStateProjector(user_repository)

    return KYCServices(
        settings=settings,
        gateway=gateway,
        users=user_repository,
        links=LinkService(gateway, user_repository, settings.branding, settings.kyc),
        projector=projector,
        webhooks=WebhookIngestor(
            gateway.signer,
            projector,
            require_signature=settings.kyc.WEBHOOK_REQUIRE_SIGNATURE
        ),
        engine=engine
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.
    Verifies the database on startup and releases outbound resources on shutdown.
    """
    services: KYCServices = app.state.services
    if services.engine is not None:
        await init_db(services.engine)
    logger.info(
        "Application started",
        extra={
            "environment": services.settings.app.ENVIRONMENT,
            "smile_environment": services.settings.smile.ENVIRONMENT
        }
    )
    try:
        yield
    finally:
        logger.info("Shutting down application...")
        await services.gateway.aclose()
        if services.engine is not None:
            await services.engine.dispose()


def create_application(
    settings: Optional[AppSettings] = None,
    *,
    gateway: Optional[SmileIDGateway] = None,
    user_repository: Optional[UserRepository] = None
) -> FastAPI:
    """
    Creates and configures the FastAPI application with all middleware and routes.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        gateway: Pre-built provider gateway (tests)
        user_repository: Pre-built user store (tests)

    Raises:
        ConfigurationError: If Smile ID credentials are missing
    """
    settings = settings or get_settings()
    setup_logging(settings)
    _init_sentry(settings)

    services = build_services(settings, gateway=gateway, user_repository=user_repository)

    app = FastAPI(
        title=settings.app.TITLE,
        description=settings.app.DESCRIPTION,
        version=settings.app.VERSION,
        docs_url="/docs" if not settings.app.is_production else None,
        redoc_url="/redoc" if not settings.app.is_production else None,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "KYC", "description": "Know Your Customer verification"},
            {"name": "Monitoring", "description": "Health and metrics"}
        ]
    )
    app.state.settings = settings
    app.state.services = services

    # Added last runs first; the correlation id must exist before request logging
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    setup_metrics(app)

    register_exception_handlers(app)

    app.mount("/metrics", make_asgi_app())
    app.include_router(kyc_router)

    @app.get("/healthz", tags=["Monitoring"])
    async def health_check():
        """
        Health check endpoint for monitoring.
        Checks the database when this process owns the engine.
        """
        if services.engine is not None and not await check_db_connection(services.engine):
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "error": "database unavailable",
                    "timestamp": time.time()
                }
            )
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "version": settings.app.VERSION,
            "environment": settings.app.ENVIRONMENT
        }

    logger.info("Application created", extra={"title": settings.app.TITLE})
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:create_application",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_config=None,  # Use our custom logging config
        proxy_headers=True
    )
