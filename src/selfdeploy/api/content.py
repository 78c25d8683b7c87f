"""Content routing: serve the deployed site, or say that nothing is deployed yet."""

from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse
from starlette.routing import Match, Mount

NO_DEPLOYMENT_HTML = (
    "<html>"
    "<body>"
    "No application has been deployed to this server."
    "</body>"
    "</html>"
)

_CONTENT_METHODS = {"GET", "HEAD"}


def _matches_host_route(request: Request) -> bool:
    """True when the host application has a route for this request."""
    path = request.url.path
    for route in request.app.router.routes:
        if isinstance(route, Mount) and (path == route.path or path.startswith(route.path + "/")):
            return True
        match, _ = route.matches(request.scope)
        if match != Match.NONE:
            return True
    return False


def setup_content_middleware(app: FastAPI) -> None:
    """Route every request that is not for a host endpoint to the content handler."""

    @app.middleware("http")
    async def serve_content(request: Request, call_next: Callable) -> Response:
        manager = request.app.state.deployment_manager
        bypass = request.query_params.get(manager.settings.bypass_param)

        if bypass or request.method not in _CONTENT_METHODS or _matches_host_route(request):
            return await call_next(request)

        handle = manager.state.handle
        if handle is None:
            return HTMLResponse(NO_DEPLOYMENT_HTML)
        return handle.response_for(request.url.path)
