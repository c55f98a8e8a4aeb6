"""Request descriptors for log lines."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gatehouse.runtime.observability import log_context

if TYPE_CHECKING:
    from starlette.responses import Response

    from gatehouse.runtime.middleware import Handler, Request


def describe(request: Request) -> str:
    """Create a readable request info text for log line prefixing.

    Examples:
        >>> describe(Request("get", "/orders", "10.0.0.1"))
        'GET /orders <- 10.0.0.1'
        >>> describe(Request("GET", "/orders", "10.0.0.1",
        ...                  annotations={"tokeninfo": {"uid": "bob", "realm": "employees"}}))
        'GET /orders <- 10.0.0.1 / bob @ employees'
    """
    client = request.header("x-forwarded-for") or request.remote_addr
    info = f"{request.method.upper()} {request.uri} <- {client}"
    if tokeninfo := request.tokeninfo:
        info += f" / {tokeninfo.get('uid') or ''} @ {tokeninfo.get('realm') or ''}"
    return info


async def enrich_log_lines(request: Request, next: Handler) -> Response:
    """Stage: expose the request descriptor as `request` in the logging context."""
    with log_context(request=describe(request)):
        return await next(request)
