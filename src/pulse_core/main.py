"""Pulse FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.routes import router as api_router
from .config import PulseConfig
from .metrics.pipeline import MetricsPipeline
from .metrics.service import MetricsService


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(
    pipeline: Optional[MetricsPipeline] = None,
    config: Optional[PulseConfig] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        pipeline: Prebuilt pipeline (tests); when omitted one is built from
            the environment at startup and closed at shutdown
        config: Settings used to build the pipeline
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline is not None:
            app.state.pipeline = pipeline
            app.state.email_tags = config.email_tags if config else []
            yield
            return

        service = MetricsService(config)
        app.state.pipeline = await service.start()
        app.state.email_tags = service.config.email_tags
        try:
            yield
        finally:
            await service.close()

    app = FastAPI(
        title="Pulse API",
        version="0.1.0",
        description="Daily marketing metrics merged from email, sales and ads",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(api_router)

    return app


app = create_app()
