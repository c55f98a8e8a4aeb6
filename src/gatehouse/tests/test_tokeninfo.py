"""Tests for token resolution against the tokeninfo endpoint."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from conftest import BOB, TOKENINFO_URL, FakeClock, Tokeninfo

from gatehouse.foundation.config import BreakerSettings, GatehouseSettings, HttpSettings
from gatehouse.foundation.errors import ErrorCode, FailureType
from gatehouse.gateway import TokenResolver
from gatehouse.runtime.resilience import CircuitBreaker, State


@pytest.mark.asyncio
async def test_valid_token_returns_claims(make_resolver, tokeninfo: Tokeninfo) -> None:
    outcome = await make_resolver().resolve("abc")

    assert outcome.unwrap() == BOB
    (call,) = tokeninfo.calls
    assert call.method == "GET"
    assert str(call.url).startswith(TOKENINFO_URL)
    assert call.url.params["access_token"] == "abc"


@pytest.mark.asyncio
async def test_rejected_token_is_not_a_dependency_failure(make_resolver) -> None:
    resolver = make_resolver()

    failure = (await resolver.resolve("nope")).unwrap_err()

    assert failure.code == ErrorCode.UNAUTHENTICATED
    assert not failure.is_dependency_failure
    assert resolver.breaker.failures == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, json=["not", "an", "object"]),
    httpx.Response(200, json={}),
    httpx.Response(200, content=b"<html>", headers={"content-type": "text/html"}),
    httpx.Response(302, headers={"location": "/login"}),
    httpx.Response(403, json={"error": "forbidden"}),
])
async def test_non_success_answers_mean_unauthenticated(response: httpx.Response, clock: FakeClock) -> None:
    resolver = TokenResolver(
        TOKENINFO_URL,
        breaker=CircuitBreaker(failure_threshold=1, clock=clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)),
    )

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.failure_type == FailureType.NOT_AUTHENTICATED
    assert resolver.breaker.state == State.CLOSED


@pytest.mark.asyncio
async def test_server_error_counts_against_breaker(make_resolver, tokeninfo: Tokeninfo) -> None:
    tokeninfo.status = 503
    resolver = make_resolver()

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.code == ErrorCode.DEPENDENCY_UNAVAILABLE
    assert failure.failure_type == FailureType.SERVER_ERROR
    assert "503" in (failure.cause or "")
    assert resolver.breaker.failures == 1


@pytest.mark.asyncio
async def test_open_breaker_fails_fast_without_network_call(make_resolver, tokeninfo: Tokeninfo) -> None:
    tokeninfo.status = 500
    resolver = make_resolver(failure_threshold=3)
    for _ in range(3):
        await resolver.resolve("abc")
    assert len(tokeninfo.calls) == 3

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.failure_type == FailureType.SHORT_CIRCUITED
    assert failure.is_dependency_failure
    assert len(tokeninfo.calls) == 3


@pytest.mark.asyncio
async def test_single_trial_after_cooldown_decides_state(make_resolver, tokeninfo: Tokeninfo, clock: FakeClock) -> None:
    tokeninfo.status = 500
    resolver = make_resolver(failure_threshold=2, cooldown=5.0)
    for _ in range(2):
        await resolver.resolve("abc")

    clock.advance(5.0)
    tokeninfo.status = None
    trial, other = await asyncio.gather(resolver.resolve("abc"), resolver.resolve("abc"))

    assert trial.unwrap() == BOB
    assert other.unwrap_err().failure_type == FailureType.SHORT_CIRCUITED
    assert len(tokeninfo.calls) == 3
    assert resolver.breaker.state == State.CLOSED


@pytest.mark.asyncio
async def test_failed_trial_reopens(make_resolver, tokeninfo: Tokeninfo, clock: FakeClock) -> None:
    tokeninfo.status = 500
    resolver = make_resolver(failure_threshold=1, cooldown=5.0)
    await resolver.resolve("abc")
    clock.advance(5.0)

    await resolver.resolve("abc")

    assert resolver.breaker.state == State.OPEN
    assert len(tokeninfo.calls) == 2


@pytest.mark.asyncio
async def test_timeout_is_a_dependency_failure(clock: FakeClock) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=BOB)

    resolver = TokenResolver(
        TOKENINFO_URL,
        timeout=0.05,
        breaker=CircuitBreaker(failure_threshold=5, clock=clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(slow)),
    )

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.failure_type == FailureType.TIMEOUT
    assert resolver.breaker.failures == 1
    assert resolver.breaker.in_flight == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(("exc", "failure_type"), [
    (httpx.ReadTimeout("read timed out"), FailureType.TIMEOUT),
    (httpx.ConnectError("connection refused"), FailureType.NETWORK_ERROR),
])
async def test_transport_errors_are_dependency_failures(
    exc: Exception, failure_type: FailureType, clock: FakeClock,
) -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        raise exc

    resolver = TokenResolver(
        TOKENINFO_URL,
        breaker=CircuitBreaker(failure_threshold=5, clock=clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(broken)),
    )

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.failure_type == failure_type
    assert resolver.breaker.failures == 1


@pytest.mark.asyncio
async def test_undecodable_body_is_a_dependency_failure(clock: FakeClock) -> None:
    def garbled(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not gzip at all", headers={"content-encoding": "gzip"})

    resolver = TokenResolver(
        TOKENINFO_URL,
        breaker=CircuitBreaker(failure_threshold=5, clock=clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(garbled)),
    )

    failure = (await resolver.resolve("abc")).unwrap_err()

    assert failure.failure_type == FailureType.NETWORK_ERROR
    assert failure.is_dependency_failure
    assert resolver.breaker.failures == 1
    assert resolver.breaker.in_flight == 0


@pytest.mark.asyncio
async def test_cancellation_releases_breaker_slot(clock: FakeClock) -> None:
    started = asyncio.Event()

    async def hang(request: httpx.Request) -> httpx.Response:
        started.set()
        await asyncio.sleep(60)
        return httpx.Response(200, json=BOB)

    resolver = TokenResolver(
        TOKENINFO_URL,
        timeout=120,
        breaker=CircuitBreaker(failure_threshold=1, clock=clock),
        client=httpx.AsyncClient(transport=httpx.MockTransport(hang)),
    )
    task = asyncio.create_task(resolver.resolve("abc"))
    await started.wait()
    assert resolver.breaker.in_flight == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert resolver.breaker.in_flight == 0
    assert resolver.breaker.failures == 0
    assert resolver.breaker.state == State.CLOSED


@pytest.mark.asyncio
async def test_concurrent_resolutions_share_one_breaker(make_resolver, tokeninfo: Tokeninfo) -> None:
    resolver = make_resolver(max_concurrent=100)

    outcomes = await asyncio.gather(*(resolver.resolve("abc") for _ in range(50)))

    assert all(o.unwrap() == BOB for o in outcomes)
    assert len(tokeninfo.calls) == 50
    assert resolver.breaker.in_flight == 0
    assert resolver.breaker.stats.calls == 50


def test_from_settings_builds_keyed_breaker() -> None:
    settings = GatehouseSettings(
        http=HttpSettings(tokeninfo_url=TOKENINFO_URL, tokeninfo_timeout=2.5),
        breaker=BreakerSettings(failure_threshold=7, cooldown=3.0, max_concurrent=9),
    )

    resolver = TokenResolver.from_settings(settings)

    assert resolver.timeout == 2.5
    assert resolver.breaker.key == TOKENINFO_URL
    assert (resolver.breaker.failure_threshold, resolver.breaker.cooldown, resolver.breaker.max_concurrent) == (7, 3.0, 9)


def test_from_settings_requires_url() -> None:
    with pytest.raises(ValueError, match="tokeninfo_url"):
        TokenResolver.from_settings(GatehouseSettings(http=HttpSettings(tokeninfo_url=None)))
