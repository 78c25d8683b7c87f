"""HTTP surface: deploy endpoint, content routing, runtime endpoints."""

from .health import router as health_router
from .deploy import router as deploy_router
from .content import setup_content_middleware

__all__ = [
    "health_router",
    "deploy_router",
    "setup_content_middleware",
]
