"""Assembly of the request pipeline.

Order is data. `default_stages` returns the stages as an explicit list,
outermost first, because later stages read what earlier ones wrote:

    health                      may answer immediately
    log-context                 descriptor without subject
    hsts, cors                  response headers (optional)
    favicon                     may answer immediately
    auth-header                 Token/Basic → Bearer
    router                      annotates operation + parameters
    metrics, tracer             external collaborators (optional)
    security                    needs operation; may answer 401/403/503
    log-context-authenticated   descriptor now with subject
    configuration               attaches settings
    audit-log                   external collaborator (optional)
    → executor                  business handler
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from gatehouse.gateway.auth import map_alternate_auth_header
from gatehouse.gateway.context import enrich_log_lines
from gatehouse.gateway.health import (
    add_config_to_request,
    add_cors_headers,
    add_hsts_header,
    health_endpoint,
    suppress_favicon_requests,
)
from gatehouse.gateway.security import Protector, SecurityStage
from gatehouse.runtime.middleware import Handler, Middleware, Request, Stage, compose

if TYPE_CHECKING:
    from starlette.responses import Response

    from gatehouse.foundation.config import GatehouseSettings


class Pipeline:
    """A composed handler that remembers its stage order.

    Args:
        stages: Ordered stages (first = outermost); names must be unique
        endpoint: Innermost handler

    Raises:
        ValueError: On duplicate stage names
    """

    __slots__ = ("stages", "endpoint", "_handler")

    def __init__(self, stages: Sequence[Stage], endpoint: Handler) -> None:
        if dupes := [name for name, n in Counter(s.name for s in stages).items() if n > 1]:
            raise ValueError(f"Duplicate pipeline stages: {', '.join(dupes)}")
        self.stages = tuple(stages)
        self.endpoint = endpoint
        self._handler = compose(self.stages, endpoint)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.stages]

    async def __call__(self, request: Request) -> Response:
        return await self._handler(request)

    def __repr__(self) -> str:
        return f"Pipeline({' → '.join(self.names)})"


def default_stages(
    settings: GatehouseSettings,
    security: Mapping[str, Protector],
    router: Middleware,
    *,
    metrics: Middleware | None = None,
    tracer: Middleware | None = None,
    audit_log: Middleware | None = None,
) -> list[Stage]:
    """The standard stage list. Optional collaborators are left out when None."""
    http = settings.http
    candidates: list[tuple[str, Any]] = [
        ("health", health_endpoint),
        ("log-context", enrich_log_lines),
        ("hsts", add_hsts_header if http.hsts else None),
        ("cors", add_cors_headers(http.cors_origin) if http.cors else None),
        ("favicon", suppress_favicon_requests),
        ("auth-header", map_alternate_auth_header),
        ("router", router),
        ("metrics", metrics),
        ("tracer", tracer),
        ("security", SecurityStage(security)),
        ("log-context-authenticated", enrich_log_lines),
        ("configuration", add_config_to_request(settings)),
        ("audit-log", audit_log),
    ]
    return [Stage(name, mw) for name, mw in candidates if mw is not None]
