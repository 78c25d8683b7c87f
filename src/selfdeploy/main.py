"""Main entry point for Selfdeploy."""

import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from selfdeploy import __version__
from selfdeploy.api.content import setup_content_middleware
from selfdeploy.api.deploy import router as deploy_router
from selfdeploy.api.health import router as health_router
from selfdeploy.api.middleware import (
    setup_error_handling,
    setup_fallback_error_handling,
    setup_logging_middleware,
    setup_metrics_middleware,
)
from selfdeploy.core.config import Settings
from selfdeploy.deploy.manager import DeploymentManager, PostDeployCallback
from selfdeploy.serving.state import ServingState
from selfdeploy.utils.logging import setup_logging

logger = structlog.get_logger()


def install(
    app: FastAPI,
    settings: Settings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    post_deploy: Optional[PostDeployCallback] = None,
) -> DeploymentManager:
    """Mount the deploy endpoint and the content handler into ``app``.

    Every request that does not match one of the app's routes is answered
    from the live directory. The host is responsible for awaiting
    ``DeploymentManager.startup()`` if it wants the initial deploy to run.
    Only deploy errors get a handler here; the host keeps its own error
    rendering for everything else.
    """
    state = ServingState.from_directory(Path(settings.dist_path))
    manager = DeploymentManager(settings, state, http_client=http_client, post_deploy=post_deploy)
    app.state.serving_state = state
    app.state.deployment_manager = manager

    setup_error_handling(app)
    app.include_router(deploy_router, tags=["deploy"])
    app.include_router(health_router, prefix="/runtime", tags=["runtime"])
    setup_content_middleware(app)

    logger.info("Selfdeploy installed", deployed=state.deployed)
    return manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Selfdeploy", version=__version__)

    manager: DeploymentManager = app.state.deployment_manager
    outcome = await manager.startup()
    if outcome is not None and not outcome.ok:
        logger.error("Initial deploy failed; serving previous content", error=str(outcome.error))

    yield

    logger.info("Shutting down Selfdeploy")


def create_app(
    settings: Settings | None = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    post_deploy: Optional[PostDeployCallback] = None,
) -> FastAPI:
    """Create FastAPI application."""
    if settings is None:
        settings = Settings()

    setup_logging(settings.log_level, settings.log_format)

    # The content handler owns the whole path space, so no interactive docs
    app = FastAPI(
        title="Selfdeploy",
        version=__version__,
        description="Content server that deploys itself",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    install(app, settings, http_client=http_client, post_deploy=post_deploy)
    setup_fallback_error_handling(app)

    setup_logging_middleware(app)
    setup_metrics_middleware(app)

    if settings.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    return app


def run():
    """Run the application."""
    settings = Settings()

    def handle_sigterm(signum, frame):
        logger.info("Received SIGTERM, initiating graceful shutdown")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_sigterm)

    config = uvicorn.Config(
        "selfdeploy.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        proxy_headers=settings.trust_forwarded_proto,
        log_config=None,  # We handle logging ourselves
        access_log=False,  # Handled by middleware
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    run()
