"""
Retrying HTTP transport for Vespa.

``RetryingTransport`` performs one logical call reliably: it injects the
bearer token, retries failed attempts with exponential backoff, and turns
the final failure into a classified :class:`~vespakit.models.VespaError`.
It knows nothing about rate limits, caching or failover.

Backoff: after failed attempt *n* (1-indexed) the transport sleeps
``retry_backoff_base * 2**n`` seconds, so with the default base of 1.0 the
waits are 2, 4, 8, ... seconds. No sleep follows the last attempt.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from vespakit.config import VespaConfig
from vespakit.models import (
    AuthenticationRejected,
    BackendServerError,
    RequestFailed,
    ResourceNotFound,
    RetriesExhausted,
    UnknownBackendError,
    VespaCancelledError,
    VespaConnectionError,
    VespaError,
    VespaResponseError,
)

logger = logging.getLogger(__name__)

try:
    _PKG_VERSION = importlib.metadata.version("vespakit")
except importlib.metadata.PackageNotFoundError:
    _PKG_VERSION = "dev"

_USER_AGENT = f"vespakit/{_PKG_VERSION}"


def backoff_delay(attempt: int, base: float, maximum: float = 0.0) -> float:
    """Delay after failed *attempt* (1-indexed): ``base * 2**attempt``, capped at *maximum* if > 0."""
    delay = base * (2**attempt)
    if maximum > 0:
        return min(delay, maximum)
    return delay


def classify_response(response: httpx.Response, method: str = "", url: str = "") -> RequestFailed:
    """Map a non-2xx response to the matching RequestFailed subclass."""
    status = response.status_code
    detail = response.text[:500]
    if status == 401:
        cls: type[RequestFailed] = AuthenticationRejected
        detail = detail or "Unauthorized: please check your API key"
    elif status == 404:
        cls = ResourceNotFound
    elif 500 <= status < 600:
        cls = BackendServerError
    else:
        cls = UnknownBackendError
    return cls(status, detail, method=method, url=url)


def decode_body(response: httpx.Response) -> Any:
    """Decode a JSON response body. An empty body decodes to ``{}``."""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise VespaResponseError(
            f"Failed to decode Vespa response from {response.request.url}: {exc}",
            raw_body=response.text,
        ) from exc


def _connection_error(exc: httpx.HTTPError, url: str) -> VespaConnectionError:
    if isinstance(exc, httpx.TimeoutException):
        error = VespaConnectionError(f"Timeout calling Vespa at {url}: {exc}")
    elif isinstance(exc, httpx.ConnectError):
        error = VespaConnectionError(f"Cannot connect to Vespa at {url}: {exc}")
    else:
        error = VespaConnectionError(f"Vespa request failed: {exc}")
    error.__cause__ = exc
    return error


class RetryingTransport:
    """Authenticated, retrying wrapper around a pooled ``httpx`` client pair.

    Args:
        config: Client configuration (timeouts, TLS, API key, retry policy).
        sleep: Blocking sleep used between sync attempts.
        async_sleep: Awaitable sleep used between async attempts.
    """

    def __init__(
        self,
        config: VespaConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        _sync_transport: httpx.BaseTransport | None = None,
        _async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._error_logger = logging.getLogger(config.error_log_channel)

        timeout = httpx.Timeout(
            connect=config.timeout_connect,
            read=config.timeout_read,
            pool=config.timeout_pool,
            write=config.timeout_read,
        )
        headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}

        transport = _sync_transport or httpx.HTTPTransport(
            verify=config.verify_ssl,  # type: ignore[arg-type]
        )
        self._sync_client = httpx.Client(transport=transport, timeout=timeout, headers=headers)

        async_transport = _async_transport or httpx.AsyncHTTPTransport(
            verify=config.verify_ssl,  # type: ignore[arg-type]
        )
        self._async_client = httpx.AsyncClient(
            transport=async_transport, timeout=timeout, headers=headers
        )

    def _headers(self, authenticate: bool, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(extra or {})
        if authenticate and self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    # -- single attempt ------------------------------------------------------

    def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        authenticate: bool = True,
    ) -> httpx.Response:
        """One attempt, no retry. Raises ``httpx.HTTPError`` on transport failure."""
        return self._sync_client.request(
            method.upper(),
            url,
            json=body if content is None else None,
            content=content,
            headers=self._headers(authenticate, headers),
        )

    async def arequest(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        authenticate: bool = True,
    ) -> httpx.Response:
        """Async variant of :meth:`request`."""
        return await self._async_client.request(
            method.upper(),
            url,
            json=body if content is None else None,
            content=content,
            headers=self._headers(authenticate, headers),
        )

    # -- retrying call -------------------------------------------------------

    def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        max_attempts: int | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> httpx.Response:
        """Issue an authenticated call, retrying until a 2xx or *max_attempts* is reached.

        *cancel* is checked before each attempt and interrupts backoff waits.
        An attempt already on the wire is not aborted: it runs until it
        answers or hits ``config.timeout_read``, and a successful answer is
        returned even if *cancel* was set meanwhile. Lower the read timeout
        when cancellation must take effect sooner.

        Raises:
            RetriesExhausted: Every attempt failed; ``last_error`` holds the
                classified failure of the final attempt.
            VespaCancelledError: *cancel* was set before an attempt or during backoff.
        """
        attempts = self._attempts(max_attempts)
        last_error: VespaError | None = None

        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise VespaCancelledError(f"{method.upper()} {url} cancelled before attempt {attempt}")
            try:
                response = self.request(method, url, body, content=content, headers=headers)
            except httpx.HTTPError as exc:
                last_error = _connection_error(exc, url)
            else:
                if response.is_success:
                    if attempt > 1:
                        logger.info("Vespa %s %s succeeded on attempt %d", method.upper(), url, attempt)
                    return response
                last_error = classify_response(response, method.upper(), url)

            delay = self._log_failure(method, url, body, attempt, attempts, last_error)
            if delay is not None:
                if cancel is not None:
                    if cancel.wait(delay):
                        raise VespaCancelledError(f"{method.upper()} {url} cancelled during backoff")
                else:
                    self._sleep(delay)

        assert last_error is not None
        raise self._exhausted(method, url, attempts, last_error) from last_error

    async def asend(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        max_attempts: int | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Async variant of :meth:`send`.

        Backoff suspends with ``asyncio.sleep``. Task cancellation propagates as
        ``asyncio.CancelledError`` from the in-flight request or the sleep and
        is never retried.
        """
        attempts = self._attempts(max_attempts)
        last_error: VespaError | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self.arequest(method, url, body, content=content, headers=headers)
            except httpx.HTTPError as exc:
                last_error = _connection_error(exc, url)
            else:
                if response.is_success:
                    if attempt > 1:
                        logger.info("Vespa %s %s succeeded on attempt %d", method.upper(), url, attempt)
                    return response
                last_error = classify_response(response, method.upper(), url)

            delay = self._log_failure(method, url, body, attempt, attempts, last_error)
            if delay is not None:
                await self._async_sleep(delay)

        assert last_error is not None
        raise self._exhausted(method, url, attempts, last_error) from last_error

    # -- helpers -------------------------------------------------------------

    def _attempts(self, max_attempts: int | None) -> int:
        attempts = self._config.retry_max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {attempts}")
        return attempts

    def _log_failure(
        self,
        method: str,
        url: str,
        body: Any,
        attempt: int,
        attempts: int,
        error: VespaError,
    ) -> float | None:
        """Log a failed attempt and return the backoff delay, or None after the last attempt."""
        extra = {"url": url, "body": body, "attempt": attempt}
        if attempt >= attempts:
            logger.warning(
                "Vespa %s attempt %d/%d failed: %s", method.upper(), attempt, attempts, error,
                extra=extra,
            )
            return None
        delay = backoff_delay(
            attempt, self._config.retry_backoff_base, self._config.retry_backoff_max
        )
        logger.warning(
            "Vespa %s attempt %d/%d failed: %s; retrying in %.1fs",
            method.upper(),
            attempt,
            attempts,
            error,
            delay,
            extra=extra,
        )
        return delay

    def _exhausted(
        self, method: str, url: str, attempts: int, last_error: VespaError
    ) -> RetriesExhausted:
        if isinstance(last_error, RequestFailed):
            error_type = type(last_error).__name__
            details: dict[str, Any] = {"status": last_error.status_code, "body": last_error.detail}
        else:
            error_type = "ConnectionError"
            details = {"error": str(last_error)}
        self._error_logger.error(
            "Vespa Error: %s",
            error_type,
            extra={"method": method.upper(), "url": url, "attempts": attempts, **details},
        )
        return RetriesExhausted(method.upper(), url, attempts, last_error)

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        self._sync_client.close()

    async def aclose(self) -> None:
        await self._async_client.aclose()
        self._sync_client.close()

    def __enter__(self) -> RetryingTransport:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    async def __aenter__(self) -> RetryingTransport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
