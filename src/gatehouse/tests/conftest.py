"""Shared fixtures for gatehouse tests."""

from __future__ import annotations

import io
import json
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from gatehouse.foundation.config import BreakerSettings, GatehouseSettings, HttpSettings, clear_settings_cache
from gatehouse.gateway import TokenResolver
from gatehouse.runtime.observability import configure_logging
from gatehouse.runtime.resilience import CircuitBreaker

TOKENINFO_URL = "https://auth.example.org/oauth2/tokeninfo"

BOB = {"uid": "bob", "realm": "employees", "scope": ["uid", "orders.read"]}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Tokeninfo:
    """Scriptable tokeninfo endpoint behind httpx.MockTransport.

    Known tokens answer 200 with their claims, unknown ones 400. Setting
    `status` forces every answer to that status (e.g. 500).
    """

    def __init__(self, tokens: dict[str, dict[str, Any]] | None = None) -> None:
        self.tokens = tokens if tokens is not None else {"abc": BOB}
        self.status: int | None = None
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.status is not None:
            return httpx.Response(self.status, json={"error": "forced"})
        token = request.url.params.get("access_token")
        if token in self.tokens:
            return httpx.Response(200, json=self.tokens[token])
        return httpx.Response(400, json={"error": "invalid_token"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokeninfo() -> Tokeninfo:
    return Tokeninfo()


@pytest.fixture
def make_settings() -> Callable[..., GatehouseSettings]:
    """Build settings without touching the environment's HTTP_* values."""
    def build(*, breaker: dict[str, Any] | None = None, **http: Any) -> GatehouseSettings:
        http.setdefault("no_listen", True)
        http.setdefault("tokeninfo_url", None)
        return GatehouseSettings(http=HttpSettings(**http), breaker=BreakerSettings(**(breaker or {})))
    return build


@pytest.fixture
def make_resolver(tokeninfo: Tokeninfo, clock: FakeClock) -> Callable[..., TokenResolver]:
    def build(*, failure_threshold: int = 3, cooldown: float = 5.0, timeout: float = 1.0, **breaker: Any) -> TokenResolver:
        return TokenResolver(
            TOKENINFO_URL,
            timeout=timeout,
            breaker=CircuitBreaker(failure_threshold=failure_threshold, cooldown=cooldown, clock=clock, **breaker),
            client=tokeninfo.client(),
        )
    return build


@pytest.fixture
def log_lines() -> Iterator[Callable[[], list[dict[str, Any]]]]:
    """Capture structured log output as parsed JSON entries."""
    buf = io.StringIO()
    configure_logging(format="json", level="DEBUG", output=buf)

    def entries() -> list[dict[str, Any]]:
        return [json.loads(line) for line in buf.getvalue().splitlines() if line]

    yield entries
    configure_logging(format="console", level="INFO")
