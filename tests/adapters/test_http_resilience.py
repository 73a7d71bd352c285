from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
import pytest

from sanflow.adapters.http_resilience import RequestGate, ResilientClient
from sanflow.config.http_resilience import ResilienceConfig, RetryPolicy
from sanflow.domain.errors import RateLimitExhausted, RemoteError, RemoteUnavailable
from tests.support.fakes import RecordingSleep

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

type Handler = Callable[[httpx.Request], Awaitable[httpx.Response]]


def _client(
    handler: Handler,
    sleep: RecordingSleep,
    *,
    total: int = 3,
    gate: RequestGate | None = None,
) -> ResilientClient:
    config = ResilienceConfig(
        name="test",
        base_url="https://api.test",
        retry=RetryPolicy(total=total, backoff_factor=1.0),
    )
    return ResilientClient(
        config, gate=gate, sleep=sleep, transport=httpx.MockTransport(handler)
    )


def _scripted(*responses: httpx.Response) -> tuple[Handler, list[httpx.Request]]:
    queue = list(responses)
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return queue.pop(0)

    return handler, seen


def test_retries_rate_limits_and_server_errors_then_succeeds() -> None:
    handler, seen = _scripted(
        httpx.Response(429, headers={"Retry-After": "5"}),
        httpx.Response(503),
        httpx.Response(200, json={"ok": True}),
    )
    sleep = RecordingSleep()

    async def scenario() -> dict[str, object]:
        async with _client(handler, sleep) as client:
            return await client.request_json("GET", "/items")

    payload = asyncio.run(scenario())

    assert payload == {"ok": True}
    assert len(seen) == 3
    assert sleep.delays == [5.0, 2.0]


def test_rate_limit_exhaustion_raises() -> None:
    handler, seen = _scripted(*(httpx.Response(429, text="slow down") for _ in range(3)))
    sleep = RecordingSleep()

    async def scenario() -> None:
        async with _client(handler, sleep, total=2) as client:
            await client.get("/items")

    with pytest.raises(RateLimitExhausted) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status == 429
    assert excinfo.value.body == "slow down"
    assert len(seen) == 3
    assert sleep.delays == [1.0, 2.0]


def test_persistent_server_errors_raise_unavailable() -> None:
    handler, _ = _scripted(httpx.Response(502), httpx.Response(502))
    sleep = RecordingSleep()

    async def scenario() -> None:
        async with _client(handler, sleep, total=1) as client:
            await client.get("/items")

    with pytest.raises(RemoteUnavailable) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status == 502


def test_client_errors_are_not_retried() -> None:
    handler, seen = _scripted(httpx.Response(404, json={"message": "missing"}))
    sleep = RecordingSleep()

    async def scenario() -> None:
        async with _client(handler, sleep) as client:
            await client.request_json("PATCH", "/items/1", json={"name": "x"})

    with pytest.raises(RemoteError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.is_not_found
    assert excinfo.value.method == "PATCH"
    assert "missing" in excinfo.value.body
    assert len(seen) == 1
    assert sleep.delays == []


def test_transport_failures_are_retried_then_raised() -> None:
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    sleep = RecordingSleep()

    async def scenario() -> None:
        async with _client(handler, sleep, total=2) as client:
            await client.get("/items")

    with pytest.raises(RemoteUnavailable, match="after 3 attempts"):
        asyncio.run(scenario())

    assert calls == 3
    assert sleep.delays == [1.0, 2.0]


def test_delete_and_empty_bodies_decode_to_empty_object() -> None:
    handler, _ = _scripted(httpx.Response(200, text="not json"), httpx.Response(204))
    sleep = RecordingSleep()

    async def scenario() -> tuple[dict[str, object], dict[str, object]]:
        async with _client(handler, sleep) as client:
            deleted = await client.request_json("DELETE", "/items/1")
            published = await client.request_json("POST", "/items/publish")
            return deleted, published

    assert asyncio.run(scenario()) == ({}, {})


def test_non_object_payload_is_rejected() -> None:
    handler, _ = _scripted(httpx.Response(200, json=[1, 2]))

    async def scenario() -> None:
        async with _client(handler, RecordingSleep()) as client:
            await client.request_json("GET", "/items")

    with pytest.raises(RemoteError, match="non-object"):
        asyncio.run(scenario())


def test_gate_spaces_consecutive_requests() -> None:
    now = [10.0]
    sleep = RecordingSleep()
    gate = RequestGate(1.0, clock=lambda: now[0], sleep=sleep)

    async def scenario() -> list[float]:
        waited = [await gate.wait()]
        gate.mark_finished()
        now[0] = 10.25
        waited.append(await gate.wait())
        gate.mark_finished()
        now[0] = 12.0
        waited.append(await gate.wait())
        return waited

    waited = asyncio.run(scenario())

    assert waited == [0.0, 0.75, 0.0]
    assert sleep.delays == [0.75]


def test_retry_policy_builds_bounded_retry() -> None:
    retry = RetryPolicy(total=2, backoff_factor=0.5).build()

    assert retry.is_retryable_status_code(429)
    assert not retry.is_retryable_status_code(404)
    assert retry.is_retryable_method("PATCH")
    assert retry.backoff_strategy() == 0.5
    assert retry.increment().backoff_strategy() == 1.0
    assert retry.increment().increment().is_exhausted()


def test_retry_after_header_variants() -> None:
    handler, _ = _scripted(
        httpx.Response(503, headers={"Retry-After": "soon"}),
        httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
        httpx.Response(200, json={}),
    )
    sleep = RecordingSleep()

    async def scenario() -> None:
        async with _client(handler, sleep) as client:
            await client.get("/items")

    asyncio.run(scenario())

    assert sleep.delays == [1.0, 0.0]


def test_gate_is_marked_after_non_retryable_errors() -> None:
    now = [10.0]
    sleep = RecordingSleep()
    gate = RequestGate(1.0, clock=lambda: now[0], sleep=sleep)
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.DecodingError("bad gzip", request=request)
        return httpx.Response(200, json={})

    async def scenario() -> None:
        async with _client(handler, sleep, gate=gate) as client:
            with pytest.raises(httpx.DecodingError):
                await client.get("/items")
            await client.get("/items")

    asyncio.run(scenario())

    assert calls == 2
    assert sleep.delays == [1.0]
