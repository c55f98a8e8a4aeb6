"""The API gateway: request pipeline, token resolution and server lifecycle.

Quick Start:
    >>> from gatehouse.gateway import HttpComponent, Operation
    >>>
    >>> def get_order(parameters, request, db):
    ...     return db.load(parameters["order_id"])
    >>>
    >>> api = HttpComponent(
    ...     [Operation("getOrder", "GET", "/orders/{order_id}", get_order,
    ...                security={"oauth2": ["orders.read"]}, dependencies=("db",))],
    ...     dependencies={"db": db},
    ... )
    >>> api.start()
"""

from .asgi import create_app, to_request
from .auth import map_alternate_auth_header, normalize_authorization
from .context import describe, enrich_log_lines
from .health import HEALTH_PATH, health_endpoint, redirect_to_ui
from .pipeline import Pipeline, default_stages
from .routing import Executor, Operation, Router, flatten_parameters
from .security import AllowAll, OAuth2Protector, Protector, SecurityStage, oauth2_security
from .server import HttpComponent, Listener, UvicornListener
from .tokeninfo import Session, TokenResolver

__all__ = [
    # Auth header normalization
    "normalize_authorization", "map_alternate_auth_header",
    # Token resolution
    "TokenResolver", "Session",
    # Logging context
    "describe", "enrich_log_lines",
    # Edge stages
    "HEALTH_PATH", "health_endpoint", "redirect_to_ui",
    # Routing
    "Operation", "Router", "Executor", "flatten_parameters",
    # Protection
    "Protector", "OAuth2Protector", "AllowAll", "SecurityStage", "oauth2_security",
    # Composition
    "Pipeline", "default_stages", "create_app", "to_request",
    # Lifecycle
    "HttpComponent", "Listener", "UvicornListener",
]
