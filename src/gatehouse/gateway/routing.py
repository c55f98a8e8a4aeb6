"""Operation routing and execution.

A small route table standing in for an API-definition driven router. It
annotates each request with the matched Operation and its parameters, which
is what the protection boundary and the executor read.

Example:
    >>> def list_orders(parameters, request, db):
    ...     return db.orders(limit=parameters.get("limit"))
    >>>
    >>> ops = [Operation("listOrders", "GET", "/orders", list_orders,
    ...                  security={"oauth2": ["orders.read"]}, dependencies=("db",))]
    >>> router, executor = Router(ops), Executor({"db": database})
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse, Response
from starlette.routing import compile_path

from gatehouse.foundation.errors import ErrorCode, GatewayError

if TYPE_CHECKING:
    from gatehouse.runtime.middleware import Handler, Request


@dataclass(frozen=True, slots=True)
class Operation:
    """One API operation.

    Args:
        operation_id: Stable operation name (used in logs and metrics)
        method: HTTP method
        path: Path template, e.g. "/orders/{order_id:int}"
        handler: Called as handler(parameters, request, **dependencies)
        security: Security scheme name -> required scopes; empty = public
        dependencies: Names of component dependencies passed to the handler
    """

    operation_id: str
    method: str
    path: str
    handler: Callable[..., Any]
    security: Mapping[str, Sequence[str]] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()


@dataclass(slots=True)
class _Route:
    operation: Operation
    regex: Any
    convertors: dict[str, Any]


class Router:
    """Stage: match method and path to an Operation."""

    __slots__ = ("_routes",)

    def __init__(self, operations: Sequence[Operation]) -> None:
        self._routes: list[_Route] = []
        for op in operations:
            regex, _, convertors = compile_path(op.path)
            self._routes.append(_Route(op, regex, convertors))

    @property
    def operations(self) -> list[Operation]:
        return [r.operation for r in self._routes]

    async def __call__(self, request: Request, next: Handler) -> Response:
        method = request.method.upper()
        allowed: list[str] = []
        for route in self._routes:
            match = route.regex.match(request.uri)
            if match is None:
                continue
            if method not in _accepted(route.operation):
                allowed.extend(_accepted(route.operation))
                continue
            path_params = {k: route.convertors[k].convert(v) for k, v in match.groupdict().items()}
            request.annotate(
                operation=route.operation,
                parameters={"path": path_params, "query": dict(request.query)},
            )
            return await next(request)

        if allowed:
            return GatewayError.create(
                405, f"{method} is not allowed here", ErrorCode.METHOD_NOT_ALLOWED,
            ).to_response(headers={"Allow": ", ".join(sorted(set(allowed)))})
        return GatewayError.create(404, "No such operation", ErrorCode.NOT_FOUND).to_response()


def _accepted(operation: Operation) -> tuple[str, ...]:
    """Methods an operation answers; HEAD is served by GET operations."""
    method = operation.method.upper()
    return (method, "HEAD") if method == "GET" else (method,)


def flatten_parameters(request: Request) -> dict[str, Any]:
    """Merge all parameter locations into one mapping.

    Parameter names are only unique together with their location; this
    assumes they are unique overall. Later locations win on clashes.
    """
    flat: dict[str, Any] = {}
    for values in request.annotations.get("parameters", {}).values():
        flat.update(values)
    return flat


class Executor:
    """Endpoint: invoke the matched operation's handler.

    The handler receives the flattened parameters, the request and, as
    keyword arguments, the component dependencies it declares. Sync handlers
    run in the threadpool. A returned dict or list becomes a JSON response.
    """

    __slots__ = ("dependencies",)

    def __init__(self, dependencies: Mapping[str, object] | None = None) -> None:
        self.dependencies = dict(dependencies or {})

    def check(self, operations: Sequence[Operation]) -> None:
        """Fail early if an operation declares a dependency nobody provides."""
        for op in operations:
            if missing := [d for d in op.dependencies if d not in self.dependencies]:
                raise ValueError(f"Operation {op.operation_id!r} needs missing dependencies: {', '.join(missing)}")

    async def __call__(self, request: Request) -> Response:
        operation: Operation | None = request.annotations.get("operation")
        if operation is None:
            return GatewayError.create(404, "No such operation", ErrorCode.NOT_FOUND).to_response()

        kwargs = {name: self.dependencies[name] for name in operation.dependencies}
        parameters = flatten_parameters(request)
        if inspect.iscoroutinefunction(operation.handler):
            result = await operation.handler(parameters, request, **kwargs)
        else:
            result = await run_in_threadpool(operation.handler, parameters, request, **kwargs)

        if isinstance(result, Response):
            return result
        return JSONResponse(result)
