"""Unified outbound HTTP transport used by every vendor adapter.

One retry policy shape for all vendors: a bounded number of attempts with
a fixed delay, retrying transport failures (timeouts, resets) and a small
set of gateway-side 5xx statuses. 4xx responses are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any

import httpx

from app.core.config import settings
from app.gateway.errors import UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES: frozenset[int] = frozenset({502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    retry_statuses: frozenset[int] = DEFAULT_RETRY_STATUSES

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_attempts=settings.http_max_attempts,
            backoff_seconds=settings.http_retry_delay_seconds,
        )

    def retries_status(self, status_code: int) -> bool:
        return status_code in self.retry_statuses


def _strip_query(url: str) -> str:
    # Gemini passes the key as a query parameter
    return url.split("?", 1)[0]


class HttpTransport:
    """httpx wrapper that owns retry behavior for all adapters.

    A fresh ``httpx.AsyncClient`` is opened per call. ``transport`` lets
    tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy.from_settings()
        self._transport = transport
        self._sleep = sleep

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        retry_statuses: frozenset[int] | None = None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        Returns the final response whatever its status; raises
        ``UpstreamTimeoutError`` if every attempt failed at transport level.
        """
        policy = self.policy if retry_statuses is None else replace(self.policy, retry_statuses=retry_statuses)
        last_exc: httpx.TransportError | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                async with self._client(timeout) as client:
                    response = await client.request(method, url, json=json, headers=headers, params=params)
            except httpx.TransportError as e:
                last_exc = e
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    method,
                    _strip_query(url),
                    attempt,
                    policy.max_attempts,
                    type(e).__name__,
                )
            else:
                if not policy.retries_status(response.status_code) or attempt == policy.max_attempts:
                    return response
                logger.warning(
                    "%s %s returned %d (attempt %d/%d), retrying",
                    method,
                    _strip_query(url),
                    response.status_code,
                    attempt,
                    policy.max_attempts,
                )

            if attempt < policy.max_attempts:
                await self._sleep(policy.backoff_seconds)

        if isinstance(last_exc, httpx.TimeoutException):
            raise UpstreamTimeoutError(f"Request timed out after {timeout:g}s") from last_exc
        raise UpstreamTimeoutError(f"Could not reach provider ({type(last_exc).__name__})") from last_exc

    async def post_json(self, url: str, payload: dict, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, json=payload, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a long-lived streamed response.

        Not retried: once bytes have been relayed the request cannot be
        replayed. Leaving the ``async with`` block closes the vendor
        connection, including on cancellation.
        """
        try:
            async with self._client(timeout) as client:
                async with client.stream(method, url, json=json, headers=headers, params=params) as response:
                    yield response
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Stream timed out after {timeout:g}s") from e
        except httpx.TransportError as e:
            raise UpstreamTimeoutError(f"Stream connection failed ({type(e).__name__})") from e
