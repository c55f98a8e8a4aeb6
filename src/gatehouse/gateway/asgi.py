"""ASGI adapter: a Starlette application that hands every request to a Pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Callable

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.routing import Route

from gatehouse.runtime.middleware import Request
from gatehouse.runtime.observability import get_logger

if TYPE_CHECKING:
    from starlette.requests import Request as StarletteRequest
    from starlette.responses import Response

    from gatehouse.gateway.pipeline import Pipeline

log = get_logger("gatehouse.asgi")

METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def to_request(request: StarletteRequest) -> Request:
    """Snapshot a Starlette request into the pipeline's Request."""
    return Request(
        method=request.method,
        uri=request.url.path,
        remote_addr=request.client.host if request.client else None,
        headers=dict(request.headers),
        query=dict(request.query_params),
        raw=request,
    )


def create_app(
    pipeline: Pipeline,
    *,
    on_shutdown: Sequence[Callable[[], Awaitable[None]]] = (),
    gzip_minimum_size: int = 1000,
) -> Starlette:
    """Create the ASGI app for a pipeline.

    Every path and method goes to the pipeline; responses are gzipped when
    the client accepts it. `on_shutdown` hooks run inside the serving event
    loop when the server shuts down.

    Example:
        >>> app = create_app(pipeline)
        >>> TestClient(app).get("/.well-known/health").json()
        {'health': True}
    """
    async def dispatch(request: StarletteRequest) -> Response:
        try:
            return await pipeline(to_request(request))
        except Exception as e:
            log.exception("unhandled error in pipeline", path=request.url.path, error=type(e).__name__)
            raise

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            for hook in on_shutdown:
                await hook()

    return Starlette(
        routes=[Route("/{path:path}", dispatch, methods=METHODS)],
        middleware=[Middleware(GZipMiddleware, minimum_size=gzip_minimum_size)],
        lifespan=lifespan,
    )
