"""
Application Factory

Builds the FastAPI app serving webhook receipt, manual sync, agent replies
and Prometheus metrics.
"""
import logging
import os
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from social_inbox.core import metrics
from social_inbox.core.config import get_settings
from social_inbox.core.errors import InboxError
from social_inbox.core.logging import setup_logging

logger = logging.getLogger(__name__)

# Structured error code -> HTTP status
ERROR_STATUS_CODES = {
    "not_found": 404,
    "conflict": 409,
    "missing_organization": 400,
    "auth_error": 401,
    "adapter_error": 422,
    "platform_api_error": 502,
    "enrichment_error": 502,
    "persistence_error": 503,
}


class AppConfig:
    """Configuration for FastAPI application."""

    def __init__(
        self,
        environment: str = None,
        title: str = "Social Inbox",
        description: str = "Unified social inbox: webhook ingestion, AI enrichment and routing",
        version: str = "1.0.0",
        enable_docs: bool = None,
        cors_origins: List[str] = None
    ):
        self.environment = environment or get_settings().environment.lower()
        self.title = title
        self.description = description
        self.version = version

        self.enable_docs = enable_docs if enable_docs is not None else (self.environment != "production")
        self.docs_url = "/docs" if self.enable_docs else None
        self.redoc_url = "/redoc" if self.enable_docs else None

        self.cors_origins = cors_origins or self._get_default_cors_origins()

    def _get_default_cors_origins(self) -> List[str]:
        cors_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS", "")
        if cors_env:
            return [origin.strip() for origin in cors_env.split(",") if origin.strip()]
        if self.environment == "development":
            return ["*"]
        return [get_settings().frontend_url]


def setup_middleware(app: FastAPI, config: AppConfig) -> None:
    logger.info(f"CORS allowed origins: {config.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=config.cors_origins != ["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "Authorization", "X-Organization-Id", "X-Hub-Signature-256"]
    )


def setup_routers(app: FastAPI) -> List[str]:
    from social_inbox.api._registry import ROUTERS

    loaded_routers = []
    for router in ROUTERS:
        app.include_router(router)
        loaded_routers.append(router.prefix.replace('/api/', '') or 'root')
    logger.info(f"Loaded routers: {loaded_routers}")
    return loaded_routers


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(InboxError)
    async def inbox_error_handler(request: Request, exc: InboxError):
        status_code = ERROR_STATUS_CODES.get(exc.code, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
        return JSONResponse(status_code=status_code, content={"success": False, "error": exc.to_dict()})


def setup_health_endpoints(app: FastAPI, config: AppConfig, loaded_routers: List[str]) -> None:

    @app.get("/health")
    async def health_check():
        settings = get_settings()
        return {
            "status": "healthy",
            "version": config.version,
            "environment": config.environment,
            "routers": loaded_routers,
            "services": {
                "openai": "available" if settings.openai_api_key else "missing_key",
                "smtp": "configured" if settings.smtp_host else "not_configured",
            }
        }

    @app.get("/metrics")
    async def prometheus_metrics():
        body, content_type = metrics.render_latest()
        return Response(content=body, media_type=content_type)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create FastAPI application with factory pattern.

    Args:
        config: Optional configuration object

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = AppConfig()

    setup_logging(level=get_settings().log_level.upper(), service_name=get_settings().service_name)
    logger.info(f"Creating FastAPI application ({config.environment})")

    app = FastAPI(
        title=config.title,
        description=config.description,
        version=config.version,
        docs_url=config.docs_url,
        redoc_url=config.redoc_url
    )

    setup_middleware(app, config)
    loaded_routers = setup_routers(app)
    setup_exception_handlers(app)
    setup_health_endpoints(app, config, loaded_routers)
    return app


app = create_app()
