"""Gatehouse - request-processing gateway for API servers.

Wraps business handlers in a fixed chain of cross-cutting stages: health
probe, request-scoped log context, Authorization header normalization,
routing, OAuth2 token validation behind a circuit breaker, and
configuration injection. Serves the result with uvicorn or hands out the
ASGI app for embedding.

Quick Start:
    >>> from gatehouse import HttpComponent, Operation, configure_logging
    >>>
    >>> configure_logging(format="json")
    >>> api = HttpComponent([Operation("ping", "GET", "/ping", lambda p, r: {"pong": True})])
    >>> with api:
    ...     ...  # GET /ping, GET /.well-known/health

Configuration comes from the environment (HTTP_PORT, HTTP_TOKENINFO_URL,
HTTP_BREAKER_FAILURE_THRESHOLD, ...); see gatehouse.foundation.config.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .foundation.config import GatehouseSettings, get_settings
from .foundation.errors import (
    AuthFailure,
    Err,
    ErrorCode,
    FailureType,
    GatehouseException,
    GatewayError,
    Ok,
    Result,
    ServerBindFailure,
)
from .gateway import (
    HttpComponent,
    Operation,
    Pipeline,
    TokenResolver,
    describe,
    normalize_authorization,
)
from .runtime.middleware import Request, Stage
from .runtime.observability import configure_logging, configure_logging_from, get_logger, log_context
from .runtime.resilience import CircuitBreaker, State

__all__ = [
    "__version__",
    # Configuration
    "GatehouseSettings", "get_settings",
    # Errors
    "ErrorCode", "FailureType", "AuthFailure", "GatewayError", "GatehouseException", "ServerBindFailure",
    "Result", "Ok", "Err",
    # Gateway
    "HttpComponent", "Operation", "Pipeline", "TokenResolver", "describe", "normalize_authorization",
    "Request", "Stage",
    # Resilience
    "CircuitBreaker", "State",
    # Logging
    "configure_logging", "configure_logging_from", "get_logger", "log_context",
]
