"""Protection boundary: per-scheme checks that run before any business handler.

A protector looks at a request and either returns it (possibly annotated
with the resolved session) or returns the error response to send instead:

    Result[Request, Response]

The security stage reads which schemes the matched operation requires and
runs the configured protector for each of them.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from gatehouse.foundation.errors import (
    DEPENDENCY_UNAVAILABLE_MESSAGE,
    ErrorCode,
    Err,
    GatewayError,
    Ok,
    Result,
)
from gatehouse.runtime.observability import get_logger

if TYPE_CHECKING:
    from starlette.responses import Response

    from gatehouse.foundation.config import GatehouseSettings
    from gatehouse.foundation.errors import AuthFailure
    from gatehouse.gateway.tokeninfo import Session, TokenResolver
    from gatehouse.runtime.middleware import Handler, Request

log = get_logger("gatehouse.security")

OAUTH2 = "oauth2"


@runtime_checkable
class Protector(Protocol):
    """Protocol for security scheme implementations."""

    async def __call__(self, request: Request, scopes: Sequence[str]) -> Result[Request, Response]: ...


class AllowAll:
    """Accept every request. Used when enforcement is switched off."""

    __slots__ = ()

    async def __call__(self, request: Request, scopes: Sequence[str]) -> Result[Request, Response]:
        return Ok(request)


class OAuth2Protector:
    """Require a Bearer token that the tokeninfo endpoint accepts.

    - no Bearer token or rejected token → 401
    - token lacks a required scope → 403
    - tokeninfo unreachable, failing or breaker open → 503
    """

    __slots__ = ("resolver",)

    def __init__(self, resolver: TokenResolver) -> None:
        self.resolver = resolver

    async def __call__(self, request: Request, scopes: Sequence[str]) -> Result[Request, Response]:
        token = bearer_token(request)
        if token is None:
            return Err(_unauthorized("No bearer token provided"))

        outcome = await self.resolver.resolve(token)
        return outcome.match(
            ok=lambda session: _authorize(request, session, scopes),
            err=_reject,
        )


def _authorize(request: Request, session: Session, scopes: Sequence[str]) -> Result[Request, Response]:
    if missing := missing_scopes(session, scopes):
        log.info("access token lacks scopes", missing=missing)
        return Err(GatewayError.create(
            403, f"Missing scopes: {' '.join(missing)}", ErrorCode.FORBIDDEN,
        ).to_response())
    return Ok(request.annotate(tokeninfo=session))


def _reject(failure: AuthFailure) -> Result[Request, Response]:
    if failure.is_dependency_failure:
        log.warning(
            "tokeninfo dependency unavailable",
            failure_type=failure.failure_type.value,
            reason=failure.cause,
        )
        return Err(GatewayError.create(
            503, DEPENDENCY_UNAVAILABLE_MESSAGE, ErrorCode.DEPENDENCY_UNAVAILABLE,
        ).to_response())
    log.info("access token rejected", reason=failure.cause)
    return Err(_unauthorized("Invalid access token"))


def bearer_token(request: Request) -> str | None:
    authorization = request.header("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def missing_scopes(session: Mapping[str, Any], scopes: Sequence[str]) -> list[str]:
    """Scopes required but not granted.

    A scope counts as granted when listed in the `scope` claim (list or
    space-separated string) or present as a claim with value true.
    """
    granted = session.get("scope") or []
    if isinstance(granted, str):
        granted = granted.split()
    return [s for s in scopes if s not in granted and session.get(s) is not True]


def _unauthorized(detail: str) -> Response:
    return GatewayError.create(401, detail, ErrorCode.UNAUTHENTICATED).to_response(
        headers={"WWW-Authenticate": "Bearer"},
    )


class SecurityStage:
    """Stage: enforce the security requirements of the matched operation.

    Operations without requirements pass untouched. A requirement naming a
    scheme without a configured protector is a deployment error and yields
    500 rather than letting the request through.
    """

    __slots__ = ("protectors",)

    def __init__(self, protectors: Mapping[str, Protector]) -> None:
        self.protectors = dict(protectors)

    async def __call__(self, request: Request, next: Handler) -> Response:
        operation = request.annotations.get("operation")
        requirements: Mapping[str, Sequence[str]] = getattr(operation, "security", None) or {}
        for scheme, scopes in requirements.items():
            protector = self.protectors.get(scheme)
            if protector is None:
                log.error("no protector for security scheme", scheme=scheme)
                return GatewayError.create(
                    500, "Security is not configured for this operation", ErrorCode.SECURITY_NOT_CONFIGURED,
                ).to_response()
            outcome = await protector(request, scopes)
            if outcome.is_err():
                return outcome.unwrap_err()
            request = outcome.unwrap()
        return await next(request)


def oauth2_security(settings: GatehouseSettings, resolver: TokenResolver | None) -> dict[str, Protector]:
    """Protectors for the oauth2 scheme, depending on configuration.

    Without a tokeninfo URL every request is allowed, and a warning says so
    on every call (i.e. on every component start).
    """
    if settings.http.tokeninfo_url and resolver is not None:
        log.info("checking access tokens", tokeninfo_url=settings.http.tokeninfo_url)
        return {OAUTH2: OAuth2Protector(resolver)}
    log.warning("No token info URL configured; NOT ENFORCING SECURITY!", security="disabled")
    return {OAUTH2: AllowAll()}
