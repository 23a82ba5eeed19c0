"""Async JSON HTTP client with bounded timeouts and retry/backoff."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sniper_engine.config import Settings
from sniper_engine.errors import TransientNetworkError
from sniper_engine.utils.logging import get_logger, log_http_retry


@dataclass(slots=True)
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""


class _RetryableStatus(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"http_status_{status}")
        self.status = status


def _is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


class JsonHttpClient:
    """Shared client for the aggregator, RPC and market data endpoints.

    Timeouts, transport failures, 429 and 5xx responses are retried with
    exponential backoff; when attempts run out a TransientNetworkError is
    raised. Any other response is returned as an HttpResult.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_sec)
        self._logger = get_logger("sniper_engine.data.http")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResult:
        return await self._request("GET", url, params=params, headers=headers)

    async def post_json(
        self,
        url: str,
        payload: Any,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResult:
        return await self._request("POST", url, json=payload, params=params, headers=headers)

    async def _request(self, method: str, url: str, **kwargs: Any) -> HttpResult:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            log_http_retry(self._logger, url=url, attempt=state.attempt_number, error=str(exc))

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.TransportError, _RetryableStatus)
            ),
            wait=wait_exponential(
                multiplier=self._settings.http_retry_wait_min_sec,
                min=self._settings.http_retry_wait_min_sec,
                max=self._settings.http_retry_wait_max_sec,
            ),
            stop=stop_after_attempt(self._settings.http_max_attempts),
            before_sleep=_before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(method, url, **kwargs)
                    if _is_retryable_status(response.status_code):
                        raise _RetryableStatus(response.status_code)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"timeout: {url}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"transport_error: {exc}") from exc
        except _RetryableStatus as exc:
            raise TransientNetworkError(f"{exc}: {url}") from exc

        status = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None
        if 200 <= status < 300:
            if data is None:
                return HttpResult(ok=False, status=status, data=None, error="invalid_json")
            return HttpResult(ok=True, status=status, data=data)
        return HttpResult(ok=False, status=status, data=data, error=f"http_status_{status}")
