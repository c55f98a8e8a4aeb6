"""Core middleware types and chain composition.

Middleware follows continuation-passing style: each stage receives the
request and a `next` handler to call downstream. A stage short-circuits by
returning a response without calling `next`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from starlette.requests import Request as StarletteRequest
    from starlette.responses import Response


@dataclass(frozen=True, slots=True)
class Request:
    """An in-flight request as seen by the pipeline.

    The fields describing what the client sent are fixed; stages that need
    to change a header derive a copy with `with_header`. `annotations` is
    the per-request scratch space where stages leave results for later
    stages (operation, parameters, tokeninfo, configuration). Copies share
    the same annotations dict.

    Example:
        >>> req = Request("GET", "/orders", "10.0.0.1", {"authorization": "Token abc"})
        >>> req.with_header("Authorization", "Bearer abc").header("authorization")
        'Bearer abc'
    """

    method: str
    uri: str
    remote_addr: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    annotations: dict[str, Any] = field(default_factory=dict, compare=False)
    raw: StarletteRequest | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", {k.lower(): v for k, v in self.headers.items()})

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def with_header(self, name: str, value: str) -> Request:
        return replace(self, headers={**self.headers, name.lower(): value})

    def annotate(self, **kw: Any) -> Request:
        self.annotations.update(kw)
        return self

    @property
    def tokeninfo(self) -> Mapping[str, Any] | None:
        """Session claims, present only after successful token resolution."""
        return self.annotations.get("tokeninfo") or None


Handler = Callable[[Request], Awaitable["Response"]]


@runtime_checkable
class Middleware(Protocol):
    """Protocol for pipeline stages.

    Example:
        >>> class TimingMiddleware:
        ...     async def __call__(self, request, next):
        ...         start = time.perf_counter()
        ...         response = await next(request)
        ...         request.annotations["duration"] = time.perf_counter() - start
        ...         return response
    """

    async def __call__(self, request: Request, next: Handler) -> Response:
        """Process the request, delegating downstream through `next`."""
        ...


@dataclass(frozen=True, slots=True)
class Stage:
    """A named position in the pipeline."""

    name: str
    middleware: Middleware | Callable[[Request, Handler], Awaitable[Response]]


def compose(stages: Sequence[Stage], endpoint: Handler) -> Handler:
    """Compose stages around an endpoint into a single handler.

    Args:
        stages: Ordered stages (first = outermost)
        endpoint: Innermost handler, reached only if no stage short-circuits

    Returns:
        Composed async function: request -> response
    """
    chain: Handler = endpoint
    for stage in reversed(stages):
        def make_wrapper(mw: Middleware, nxt: Handler) -> Handler:
            async def wrapped(request: Request) -> Response:
                return await mw(request, nxt)
            return wrapped
        chain = make_wrapper(stage.middleware, chain)  # type: ignore[arg-type]
    return chain
