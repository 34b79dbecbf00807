"""
Async HTTP client wrapper for provider requests.
Includes rate limiting, retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import ProviderMalformedData, ProviderUnavailable
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS
from shared.utils.rate_limiter import TokenBucket

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.
    Handles rate limiting, timeouts and retries, and records metrics per request.

    Every failure leaves this class as ProviderUnavailable so adapters never
    see raw httpx exceptions.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        default_params: dict[str, Any] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        rate_limiter: TokenBucket | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_s: float = 1.0,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = settings.provider_max_retries if max_retries is None else max_retries
        self._retry_after_cap = settings.provider_retry_after_cap_s
        self._default_headers = {"User-Agent": "ScoreFusion/1.0", **(headers or {})}
        self._default_params = default_params or {}
        self._rate_limiter = rate_limiter
        self._transport = transport
        self._backoff_s = backoff_s
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _retry_after(self, resp: httpx.Response) -> float:
        try:
            value = float(resp.headers.get("Retry-After", "2"))
        except ValueError:
            value = 2.0
        return max(0.0, min(value, self._retry_after_cap))

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform a GET request with rate limiting, retry, metrics, and structured logging.

        429 is retried after Retry-After (capped); 5xx, timeouts and transport
        errors are retried with linear backoff; other 4xx fail immediately.

        Args:
            path: API path relative to base_url.
            params: Query parameters, merged over the client defaults.
            extra_headers: Request-specific headers.

        Returns:
            httpx.Response with a 2xx/3xx status.

        Raises:
            ProviderUnavailable: On any failure once retries are exhausted.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        merged_params = {**self._default_params, **(params or {})}
        attempts = self._max_retries + 1

        for attempt in range(1, attempts + 1):
            if self._rate_limiter is not None:
                if not await self._rate_limiter.wait_until_available(self._timeout):
                    PROVIDER_REQUESTS.labels(provider=self._provider, status="rate_limited").inc()
                    raise ProviderUnavailable(
                        self._provider, "no rate limit slot within timeout", rate_limited=True
                    )

            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.get(path, params=merged_params, headers=extra_headers)
                status = str(resp.status_code)

                if resp.status_code == 429:
                    retry_after = self._retry_after(resp)
                    logger.warning(
                        "provider_rate_limited",
                        provider=self._provider,
                        path=path,
                        attempt=attempt,
                        retry_after_s=retry_after,
                    )
                    if attempt < attempts:
                        if self._rate_limiter is not None:
                            self._rate_limiter.record_backoff(retry_after)
                        else:
                            await asyncio.sleep(retry_after)
                        continue
                    raise ProviderUnavailable(
                        self._provider, "rate limited by provider", status_code=429, rate_limited=True
                    )

                if resp.status_code >= 500:
                    logger.warning(
                        "provider_server_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < attempts:
                        await asyncio.sleep(self._backoff_s * attempt)
                        continue
                    raise ProviderUnavailable(
                        self._provider, f"HTTP {resp.status_code}", status_code=resp.status_code
                    )

                if resp.status_code >= 400:
                    logger.error(
                        "provider_http_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        body=resp.text[:500],
                    )
                    raise ProviderUnavailable(
                        self._provider, f"HTTP {resp.status_code}", status_code=resp.status_code
                    )

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < attempts:
                    await asyncio.sleep(self._backoff_s * attempt)
                    continue
                raise ProviderUnavailable(self._provider, f"timeout after {self._timeout}s") from exc

            except httpx.HTTPError as exc:
                status = "error"
                logger.warning(
                    "provider_request_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < attempts:
                    await asyncio.sleep(self._backoff_s * attempt)
                    continue
                raise ProviderUnavailable(self._provider, f"request failed: {exc}") from exc

            finally:
                PROVIDER_LATENCY.labels(provider=self._provider).observe(time.perf_counter() - start_time)
                PROVIDER_REQUESTS.labels(provider=self._provider, status=status).inc()

        raise ProviderUnavailable(self._provider, f"request failed after {attempts} attempts")

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        """GET and decode the JSON body; an undecodable body is malformed data."""
        resp = await self.get(path, params=params, extra_headers=extra_headers)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderMalformedData(self._provider, f"invalid JSON from {path}") from exc
