"""
Application Factory

Creates the FastAPI app serving the webhook endpoints, health check and
Prometheus metrics.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Response

from socialhub.core.config import Settings, get_settings
from socialhub.core.encryption import validate_token_encryption_at_boot
from socialhub.core.logging import setup_logging
from socialhub.core.monitoring import metrics

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI) -> None:
    from socialhub.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)


def setup_health_endpoints(app: FastAPI, settings: Settings) -> None:
    @app.get("/health")
    async def health():
        return {"status": "healthy", "environment": settings.environment}

    @app.get("/metrics")
    async def prometheus_metrics():
        content, content_type = metrics.export()
        return Response(content=content, media_type=content_type)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        settings: Optional settings, defaults to the cached environment settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    setup_logging()

    if settings.is_production and not validate_token_encryption_at_boot():
        raise RuntimeError("TOKEN_ENCRYPTION_KEY is missing or invalid")

    app = FastAPI(
        title="SocialHub",
        description="Social CRM webhook ingestion and outbound dispatch",
        version="1.0.0",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    setup_routers(app)
    setup_health_endpoints(app, settings)

    logger.info(f"SocialHub API created ({settings.environment}), {len(app.routes)} routes")
    return app
