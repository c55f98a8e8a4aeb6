"""Standardized error handling for the gateway.

Two families live here:
- Tagged failures (AuthFailure) that travel inside a Result and are
  pattern-matched by the protection boundary.
- Client-facing problems (GatewayError) that become HTTP responses. These
  never carry internal exception detail.

Only lifecycle faults are raised (GatehouseException and subclasses).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from starlette.responses import JSONResponse


class ErrorCode(StrEnum):
    """Machine-readable error classification."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    SECURITY_NOT_CONFIGURED = "SECURITY_NOT_CONFIGURED"
    BIND_FAILED = "BIND_FAILED"
    INTERNAL = "INTERNAL"


class FailureType(StrEnum):
    """Why an authentication attempt did not produce a session."""
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"  # Token rejected, dependency healthy
    SHORT_CIRCUITED = "SHORT_CIRCUITED"      # Breaker open, no call issued
    REJECTED = "REJECTED"                    # Concurrency bound reached
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"            # 5xx from the introspection endpoint
    NETWORK_ERROR = "NETWORK_ERROR"


_DEPENDENCY_FAILURES: frozenset[FailureType] = frozenset({
    FailureType.SHORT_CIRCUITED,
    FailureType.REJECTED,
    FailureType.TIMEOUT,
    FailureType.SERVER_ERROR,
    FailureType.NETWORK_ERROR,
})

DEPENDENCY_UNAVAILABLE_MESSAGE = "A dependency is unavailable."


class AuthFailure(BaseModel):
    """Typed failure of token resolution.

    Attributes:
        code: UNAUTHENTICATED or DEPENDENCY_UNAVAILABLE
        message: Log-friendly summary
        failure_type: Finer classification for logs and tests
        cause: Underlying reason (status code, exception text); log-only
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    code: ErrorCode
    message: Annotated[str, Field(min_length=1)]
    failure_type: FailureType = FailureType.NOT_AUTHENTICATED
    cause: str | None = Field(default=None, repr=False)

    @computed_field
    @property
    def is_dependency_failure(self) -> bool:
        """Whether this failure should surface as 503 rather than 401."""
        return self.failure_type in _DEPENDENCY_FAILURES

    @classmethod
    def unauthenticated(cls, message: str = "Token is not valid", *, cause: str | None = None) -> Self:
        return cls(code=ErrorCode.UNAUTHENTICATED, message=message, cause=cause)

    @classmethod
    def dependency_unavailable(cls, failure_type: FailureType, cause: str) -> Self:
        return cls(
            code=ErrorCode.DEPENDENCY_UNAVAILABLE,
            message=DEPENDENCY_UNAVAILABLE_MESSAGE,
            failure_type=failure_type,
            cause=cause,
        )


class GatewayError(BaseModel):
    """Client-facing problem description.

    Rendered as a small JSON problem document. `detail` is always a fixed,
    human-readable message chosen by the gateway.

    Example:
        >>> GatewayError.create(503, "A dependency is unavailable.").to_response().status_code
        503
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    status: Annotated[int, Field(ge=400, le=599)]
    title: str
    detail: Annotated[str, Field(min_length=1)]
    code: ErrorCode = ErrorCode.INTERNAL

    @field_validator("detail", mode="before")
    @classmethod
    def _ensure_detail(cls, v: str | Exception) -> str:
        return str(v) if isinstance(v, Exception) else v

    @classmethod
    def create(cls, status: int, detail: str, code: ErrorCode = ErrorCode.INTERNAL) -> Self:
        return cls(status=status, title=_TITLES.get(status, "Error"), detail=detail, code=code)

    def to_response(self, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(
            self.model_dump(exclude={"code"}),
            status_code=self.status,
            headers=headers,
            media_type="application/problem+json",
        )


_TITLES: dict[int, str] = {
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class GatehouseException(Exception):
    """Base for errors raised (not returned) by gatehouse."""

    code: ErrorCode = ErrorCode.INTERNAL


class ServerBindFailure(GatehouseException):
    """The HTTP listener could not bind its address."""

    code = ErrorCode.BIND_FAILED

    def __init__(self, host: str, port: int, reason: str) -> None:
        self.host, self.port = host, port
        super().__init__(f"Cannot bind HTTP listener to {host}:{port}: {reason}")
