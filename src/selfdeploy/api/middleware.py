"""API middleware for logging, metrics, and error handling."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.exceptions import HTTPException as StarletteHTTPException

from selfdeploy.core.exceptions import SelfDeployError

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "selfdeploy_http_requests_total",
    "Total HTTP requests",
    ["method", "status"],
)

REQUEST_DURATION = Histogram(
    "selfdeploy_http_request_duration_seconds",
    "HTTP request duration",
    ["method"],
)


def setup_error_handling(app: FastAPI) -> None:
    """Render deploy errors as JSON with the status of their class."""

    @app.exception_handler(SelfDeployError)
    async def selfdeploy_error_handler(request: Request, exc: SelfDeployError) -> JSONResponse:
        """Render deploy errors with their kind and message."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.__class__.__name__,
                "message": str(exc),
                "code": exc.code,
            },
        )


def setup_fallback_error_handling(app: FastAPI) -> None:
    """Render HTTP errors and unexpected exceptions as JSON.

    Only for a standalone app; a host app keeps its own rendering.
    """

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTPException",
                "message": exc.detail,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
            },
        )


def setup_logging_middleware(app: FastAPI) -> None:
    """Setup request logging middleware."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        """Log all requests."""
        request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )
        start_time = time.time()

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration_seconds=duration,
            )

            response.headers["X-Request-ID"] = request_id

            return response

        except Exception as exc:
            duration = time.time() - start_time
            logger.exception(
                "Request failed",
                duration_seconds=duration,
                exc_info=exc,
            )
            raise


def setup_metrics_middleware(app: FastAPI) -> None:
    """Setup metrics collection middleware."""

    @app.middleware("http")
    async def collect_metrics(request: Request, call_next: Callable) -> Response:
        """Collect request metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        # Content paths are unbounded, so paths are not used as a label
        REQUEST_COUNT.labels(
            method=request.method,
            status=response.status_code,
        ).inc()

        REQUEST_DURATION.labels(
            method=request.method,
        ).observe(duration)

        return response
