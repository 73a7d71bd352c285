from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import (
    TYPE_CHECKING,
    Any,
    TypedDict,
    Unpack,
)

import httpx
from aiolimiter import AsyncLimiter

from sanflow.domain.errors import RateLimitExhausted, RemoteError, RemoteUnavailable

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._client import UseClientDefault
    from httpx._types import (
        AuthTypes,
        CookieTypes,
        HeaderTypes,
        QueryParamTypes,
        RequestContent,
        RequestData,
        RequestExtensions,
        RequestFiles,
        TimeoutTypes,
        URLTypes,
    )
    from httpx_retries import Retry

    from sanflow.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

type Clock = Callable[[], float]
type Sleep = Callable[[float], Awaitable[None]]

_BODY_PREVIEW_LIMIT = 2000


class RequestOptions(TypedDict, total=False):
    content: RequestContent | None
    data: RequestData | None
    files: RequestFiles | None
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    cookies: CookieTypes | None
    auth: AuthTypes | UseClientDefault | None
    follow_redirects: bool | UseClientDefault
    timeout: TimeoutTypes | UseClientDefault
    extensions: RequestExtensions | None


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: HeaderTypes
    transport: httpx.AsyncBaseTransport


class RequestGate:
    """Minimum spacing between the end of one request and the start of the next.

    A single gate is shared by every caller that talks to the same account, so
    the budget holds no matter which collection issues the request. Execution
    is sequential, which keeps the read-then-update of ``_last_finished`` safe
    without a lock.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_finished: float | None = None

    async def wait(self) -> float:
        if self._last_finished is None or self.min_interval_seconds <= 0:
            return 0.0
        remaining = self.min_interval_seconds - (self._clock() - self._last_finished)
        if remaining <= 0:
            return 0.0
        await self._sleep(remaining)
        return remaining

    def mark_finished(self) -> None:
        self._last_finished = self._clock()


class ResilientClient:
    """``httpx.AsyncClient`` wrapper with spacing, budget and bounded retries.

    429 responses, 5xx responses and transport failures are retried up to
    ``RetryPolicy.total`` times with exponential backoff (or the server's
    ``Retry-After``). Once the ceiling is hit, 429 surfaces as
    :class:`RateLimitExhausted` and the rest as :class:`RemoteUnavailable`.
    Any other non-2xx response raises :class:`RemoteError` without retrying.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        gate: RequestGate | None = None,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self.gate = gate or RequestGate(config.min_interval_seconds, sleep=sleep)
        self._limiter: AsyncLimiter | None = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )

        client_kwargs: AsyncClientOptions = {"timeout": config.timeout_seconds}
        if config.base_url is not None:
            client_kwargs["base_url"] = config.base_url
        if config.default_headers:
            client_kwargs["headers"] = dict(config.default_headers)
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        retry = self.config.retry.build()
        while True:
            try:
                response = await self._send(lambda: self._client.request(method, url, **kwargs))
            except httpx.HTTPError as exc:
                if not retry.is_retryable_exception(exc):
                    raise
                if retry.is_exhausted() or not retry.is_retryable_method(method):
                    raise RemoteUnavailable(
                        f"{self.config.name}: {method} {url} failed after "
                        f"{retry.attempts_made + 1} attempts: {exc}",
                        method=method,
                        url=str(url),
                    ) from exc
                delay = retry.backoff_strategy()
                log.warning(
                    "%s: %s %s raised %s, retrying in %.1fs (attempt %s/%s)",
                    self.config.name,
                    method,
                    url,
                    type(exc).__name__,
                    delay,
                    retry.attempts_made + 1,
                    retry.total,
                )
                await self._sleep(delay)
                retry = retry.increment()
                continue

            if response.is_success:
                return response

            status = response.status_code
            if not retry.is_retryable_status_code(status):
                raise RemoteError(
                    f"{self.config.name}: {method} {url} returned {status}",
                    status=status,
                    body=_body_preview(response),
                    method=method,
                    url=str(url),
                )
            if retry.is_exhausted() or not retry.is_retryable_method(method):
                error_type = RateLimitExhausted if status == 429 else RemoteUnavailable
                raise error_type(
                    f"{self.config.name}: {method} {url} still returned {status} "
                    f"after {retry.attempts_made + 1} attempts",
                    status=status,
                    body=_body_preview(response),
                    method=method,
                    url=str(url),
                )
            delay = _retry_delay(retry, response)
            log.warning(
                "%s: %s %s returned %s, retrying in %.1fs (attempt %s/%s)",
                self.config.name,
                method,
                url,
                status,
                delay,
                retry.attempts_made + 1,
                retry.total,
            )
            await self._sleep(delay)
            retry = retry.increment()

    async def request_json(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> dict[str, Any]:
        """Issue a request and decode its JSON object body.

        DELETE requests and empty (204) bodies come back as ``{}``.
        """

        response = await self.request(method, url, **kwargs)
        if method.upper() == "DELETE" or response.status_code == 204 or not response.content:
            return {}
        payload = response.json()
        if not isinstance(payload, dict):
            raise RemoteError(
                f"{self.config.name}: {method} {url} returned a non-object payload",
                status=response.status_code,
                body=_body_preview(response),
                method=method,
                url=str(url),
            )
        return payload

    async def get(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def _send(self, func: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        await self.gate.wait()
        try:
            if self._limiter is None:
                return await func()
            async with self._limiter:
                return await func()
        finally:
            self.gate.mark_finished()


def _retry_delay(retry: Retry, response: httpx.Response) -> float:
    header = response.headers.get("Retry-After", "").strip()
    if retry.respect_retry_after_header and header:
        try:
            return min(retry.parse_retry_after(header), retry.max_backoff_wait)
        except ValueError:
            log.debug("Ignoring unparseable Retry-After header %r", header)
    return retry.backoff_strategy()


def _body_preview(response: httpx.Response) -> str:
    try:
        return response.text[:_BODY_PREVIEW_LIMIT]
    except UnicodeDecodeError:
        return ""
