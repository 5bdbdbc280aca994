"""Main entry point for Site Deployer."""

import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from site_deployer import __version__
from site_deployer.api.deploy import init_deploy_manager, router as deploy_router
from site_deployer.api.health import health_check as runtime_health_check
from site_deployer.api.health import router as health_router
from site_deployer.api.middleware import (
    setup_error_handling,
    setup_logging_middleware,
    setup_metrics_middleware,
)
from site_deployer.core.config import Settings
from site_deployer.deploy.manager import DeploymentManager
from site_deployer.utils.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = app.state.settings
    logger.info("Starting Site Deployer", version=__version__, root=settings.root)

    Path(settings.root).mkdir(parents=True, exist_ok=True)

    if settings.purge_on_startup:
        removed = app.state.deployment_manager.purge_stale(include_backups=False)
        logger.info("Startup cleanup done", removed=len(removed))

    yield

    logger.info("Shutting down Site Deployer")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create FastAPI application."""
    if settings is None:
        settings = Settings()

    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Site Deployer",
        version=__version__,
        description="Transactional deployment of files and tar archives below a site root",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.deployment_manager = init_deploy_manager(
        DeploymentManager(settings.root, history_size=settings.history_size)
    )

    setup_error_handling(app)
    setup_logging_middleware(app)
    setup_metrics_middleware(app)

    app.include_router(health_router, prefix="/runtime", tags=["runtime"])

    # Provide top-level health alias for load balancers
    @app.get("/health")
    async def top_level_health():
        return await runtime_health_check()

    # Prometheus metrics endpoint; a mount would lose "/metrics" to the catch-all route
    if settings.metrics_enabled:

        @app.get("/metrics", include_in_schema=False)
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Catch-all deploy routes go last so they never shadow the endpoints above
    app.include_router(deploy_router, tags=["deploy"])

    return app


def run(settings: Settings | None = None):
    """Run the application."""
    settings = settings or Settings()

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM, initiating graceful shutdown")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    # Reload and multiple workers need an import string; settings then come from the environment
    if settings.reload or settings.workers > 1:
        app = "site_deployer.main:create_app"
    else:
        app = create_app(settings)

    config = uvicorn.Config(
        app,
        factory=isinstance(app, str),
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.reload,
        log_config=None,  # We handle logging ourselves
        access_log=False,  # Handled by middleware
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    run()
