"""Edge stages: health probe, favicon suppression, response headers, UI redirect."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import RedirectResponse, Response

if TYPE_CHECKING:
    from gatehouse.foundation.config import GatehouseSettings
    from gatehouse.runtime.middleware import Handler, Middleware, Request

HEALTH_PATH = "/.well-known/health"
HEALTH_BODY = b'{"health": true}'
UI_PATH = "/ui/"

HSTS_VALUE = "max-age=31536000; includeSubDomains"
CORS_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
CORS_HEADERS = "Authorization, Content-Type, X-Forwarded-For"


async def health_endpoint(request: Request, next: Handler) -> Response:
    """Stage: answer load balancer probes without touching the rest of the pipeline."""
    if request.uri == HEALTH_PATH:
        return Response(HEALTH_BODY, status_code=200, media_type="application/json")
    return await next(request)


async def suppress_favicon_requests(request: Request, next: Handler) -> Response:
    """Stage: browsers ask for /favicon.ico; an API has none."""
    if request.uri == "/favicon.ico":
        return Response(status_code=404)
    return await next(request)


async def add_hsts_header(request: Request, next: Handler) -> Response:
    response = await next(request)
    response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
    return response


def add_cors_headers(origin: str = "*") -> Middleware:
    """Stage factory: allow browser clients from `origin`."""
    async def cors(request: Request, next: Handler) -> Response:
        response = await next(request)
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Methods", CORS_METHODS)
        response.headers.setdefault("Access-Control-Allow-Headers", CORS_HEADERS)
        return response
    return cors  # type: ignore[return-value]


def add_config_to_request(settings: GatehouseSettings) -> Middleware:
    """Stage factory: hand the component configuration to later stages and handlers."""
    async def configure(request: Request, next: Handler) -> Response:
        request.annotate(configuration=settings)
        return await next(request)
    return configure  # type: ignore[return-value]


def redirect_to_ui(*_: object) -> Response:
    """Operation handler for the API root: send browsers to the UI."""
    return RedirectResponse(UI_PATH)
