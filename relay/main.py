"""
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from relay.config import Settings, settings as default_settings
from relay.core.relay import RelayService
from relay.api import rooms, stats
from relay.middleware.metrics_middleware import MetricsMiddleware
from relay.services.upstream import UpstreamFactory
from relay.utils.logging import configure_logging
from relay.utils.metrics import get_metrics, CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    upstream_factory: Optional[UpstreamFactory] = None,
) -> FastAPI:
    """Build the relay application; upstream_factory defaults to TikTok Live"""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        # Startup
        factory = upstream_factory
        if factory is None:
            from relay.services.tiktok_client import create_tiktok_upstream
            factory = create_tiktok_upstream

        relay = RelayService(
            factory,
            connect_timeout=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            janitor_interval=settings.JANITOR_INTERVAL_SECONDS,
            idle_threshold=settings.IDLE_THRESHOLD_SECONDS,
            send_timeout=settings.BROADCAST_SEND_TIMEOUT_SECONDS,
        )
        app.state.relay = relay
        await relay.start()
        logger.info("%s %s started", settings.API_TITLE, settings.API_VERSION)
        
        yield
        
        # Shutdown
        logger.info("Shutting down...")
        await relay.stop()

    app = FastAPI(
        title=settings.API_TITLE,
        version=settings.API_VERSION,
        description=settings.API_DESCRIPTION,
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Metrics middleware
    app.add_middleware(MetricsMiddleware)

    # Include API routers
    app.include_router(rooms.router, tags=["rooms"])
    app.include_router(stats.router, prefix="/api", tags=["stats"])
    # Same health payload at the root for load balancers
    app.add_api_route("/health", stats.health, methods=["GET"], tags=["stats"])

    @app.get("/")
    async def root():
        """API info"""
        return {
            "message": settings.API_TITLE,
            "version": settings.API_VERSION,
            "docs": "/docs",
            "socket": "/ws",
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint"""
        return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT, log_config=None)
