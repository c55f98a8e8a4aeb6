"""Resolution of OAuth2 access tokens against a tokeninfo endpoint.

The endpoint is called as `GET <url>?access_token=<token>` and answers a
JSON object of claims for a valid token. Every call goes through the
resolver's circuit breaker:

    - 5xx, timeouts, transport and other request errors (e.g. an
      undecodable body) count as dependency failures
    - 2xx without a claims object, 3xx and 4xx mean "not authenticated"
      and count as healthy calls
    - an open breaker fails fast without touching the network

Outcomes are returned as Result[Session, AuthFailure], never raised.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from gatehouse.foundation.errors import AuthFailure, Err, FailureType, Ok, Result
from gatehouse.runtime.resilience import CircuitBreaker

if TYPE_CHECKING:
    from gatehouse.foundation.config import GatehouseSettings

Session = dict[str, Any]


class TokenResolver:
    """Checks access tokens with a tokeninfo endpoint.

    One resolver (and therefore one breaker) exists per configured endpoint
    and is shared by all concurrent requests.

    Args:
        url: Tokeninfo endpoint
        timeout: Upper bound in seconds for one resolution, connect included
        breaker: Circuit breaker to use (default: keyed by url)
        client: httpx client to use (default: created lazily, owned)

    Example:
        >>> resolver = TokenResolver("https://auth.example.org/oauth2/tokeninfo")
        >>> outcome = await resolver.resolve("abc123")
        >>> outcome.unwrap()["uid"]
        'bob'
    """

    __slots__ = ("url", "timeout", "breaker", "_client", "_owns_client")

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 1.0,
        breaker: CircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(key=url)
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: GatehouseSettings) -> TokenResolver:
        if settings.http.tokeninfo_url is None:
            raise ValueError("tokeninfo_url is not configured")
        b = settings.breaker
        return cls(
            settings.http.tokeninfo_url,
            timeout=settings.http.tokeninfo_timeout,
            breaker=CircuitBreaker(
                failure_threshold=b.failure_threshold,
                window=b.window,
                cooldown=b.cooldown,
                max_concurrent=b.max_concurrent,
                key=settings.http.tokeninfo_url,
            ),
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=False)
        return self._client

    async def aclose(self) -> None:
        """Close the httpx client if this resolver created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def resolve(self, access_token: str) -> Result[Session, AuthFailure]:
        """Check the token and return its session claims.

        Returns:
            Ok(claims) for a valid token. Err(AuthFailure) otherwise, with
            failure_type NOT_AUTHENTICATED for a rejected token and a
            dependency failure type when the endpoint could not answer.
        """
        acquired = self.breaker.acquire()
        if acquired.is_err():
            failure_type = acquired.unwrap_err()
            return Err(AuthFailure.dependency_unavailable(
                failure_type, f"circuit {self.breaker.key} refused the call ({failure_type.value})",
            ))

        with acquired.unwrap() as permit:
            try:
                async with asyncio.timeout(self.timeout):
                    response = await self._get_client().get(
                        self.url,
                        params={"access_token": access_token},
                        headers={"Accept": "application/json"},
                    )
            except (TimeoutError, httpx.TimeoutException):
                permit.failure()
                return Err(AuthFailure.dependency_unavailable(
                    FailureType.TIMEOUT, f"tokeninfo endpoint did not answer within {self.timeout}s",
                ))
            except httpx.TransportError as e:
                permit.failure()
                return Err(AuthFailure.dependency_unavailable(
                    FailureType.NETWORK_ERROR, f"{type(e).__name__}: {e}",
                ))
            except httpx.RequestError as e:
                permit.failure()
                return Err(AuthFailure.dependency_unavailable(
                    FailureType.NETWORK_ERROR, f"{type(e).__name__}: {e}",
                ))

            if response.is_server_error:
                permit.failure()
                return Err(AuthFailure.dependency_unavailable(
                    FailureType.SERVER_ERROR, f"tokeninfo endpoint returned status code: {response.status_code}",
                ))
            permit.success()

        return _session_from(response)


def _session_from(response: httpx.Response) -> Result[Session, AuthFailure]:
    if not response.is_success:
        return Err(AuthFailure.unauthenticated(cause=f"tokeninfo status {response.status_code}"))
    try:
        body = response.json()
    except ValueError:
        return Err(AuthFailure.unauthenticated(cause="tokeninfo body is not JSON"))
    if not isinstance(body, dict) or not body:
        return Err(AuthFailure.unauthenticated(cause="tokeninfo body carries no claims"))
    return Ok(body)
