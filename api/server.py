"""FastAPI server for the integration hub.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_error_handlers
from api.routes import health, integrations, mappings, webhooks
from core import __version__
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from hub import Hub, create_hub


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    owns_hub = app.state.hub is None
    if owns_hub:
        settings = get_settings()
        configure_logging(level=settings.log_level, json_format=settings.log_json)
        app.state.hub = create_hub(settings)
    logger.info("Integration hub API starting up")

    yield

    logger.info("Integration hub API shutting down")
    if owns_hub:
        await app.state.hub.close()
        app.state.hub = None


def create_app(hub: Optional[Hub] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        hub: Pre-built hub (tests); when None the lifespan builds one from settings
    """
    app = FastAPI(
        title="Storehub Integration API",
        description="Integrations, sync jobs, field mappings and outbound webhooks",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(integrations.router, prefix="/integrations", tags=["Integrations"])
    app.include_router(mappings.router, prefix="/integrations", tags=["Mappings"])
    app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
