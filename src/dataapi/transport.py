"""
Transport - HTTP exchange with bounded, idempotency-aware retries.

The transport owns one blocking ``httpx.Client``. It is built once by the
DataAPIClient and shared by reference with every runner.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

import httpx

from .options import DataAPIOptions
from .types import IllegalStateError, TransportError, ValidationError

__all__ = ["HttpRequest", "HttpResponse", "RetryingTransport"]

logger = logging.getLogger(__name__)

# Failures raised before the request left the client: safe to retry for any command.
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


@dataclass(frozen=True)
class HttpRequest:
    """
    One HTTP request.

    Attributes:
        url: Target URL.
        body: Encoded JSON body.
        headers: Request headers.
        timeout: Deadline of the whole exchange, retries included.
        idempotent: Whether replaying the request is harmless.
        method: HTTP method.
    """

    url: str
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None
    idempotent: bool = False
    method: str = "POST"


@dataclass(frozen=True)
class HttpResponse:
    """Status, headers and body of an HTTP response."""

    status_code: int
    headers: Mapping[str, str]
    body: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class RetryingTransport:
    """
    Sends requests and retries transient failures.

    Retries follow ``options.retry``: at most ``retry_count + 1`` attempts,
    with the backoff policy deciding the pause between them. Connection
    failures and HTTP 429 are retried for every request since the service
    never processed it. Failures that may have reached the service (read
    timeouts, resets, retryable 5xx) are retried only when the request is
    idempotent or ``retry_writes`` is enabled.

    Example:
        transport = RetryingTransport(DataAPIOptions())
        response = transport.send(HttpRequest(url, body, headers, timeout=10))
        transport.close()
    """

    def __init__(
        self,
        options: DataAPIOptions,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the transport.

        Args:
            options: Client options (timeouts and retry policy).
            client: Pre-built httpx client, mainly for tests.
            sleep: Function used to wait between attempts.
            clock: Monotonic clock used for deadlines.
        """
        self._options = options
        self._policy = options.retry
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(options.timeout, connect=options.connect_timeout),
            follow_redirects=True,
        )
        self._sleep = sleep
        self._clock = clock

    @property
    def options(self) -> DataAPIOptions:
        return self._options

    def send(self, request: HttpRequest) -> HttpResponse:
        """
        Send a request, retrying transient failures.

        Returns:
            The last response received. Non-retryable statuses are returned
            as-is for the caller to interpret.

        Raises:
            TransportError: If attempts or the deadline are exhausted.
            ValidationError: If the URL is malformed.
            IllegalStateError: If the HTTP client was closed.
        """
        deadline = self._clock() + request.timeout if request.timeout else None
        max_attempts = self._policy.max_attempts
        attempt = 0
        last_error: Exception | None = None
        last_status: int | None = None
        timed_out = False

        while attempt < max_attempts:
            remaining = None if deadline is None else deadline - self._clock()
            if remaining is not None and remaining <= 0:
                timed_out = True
                break

            attempt += 1
            try:
                response = self._client.request(
                    request.method,
                    request.url,
                    content=request.body,
                    headers=dict(request.headers),
                    timeout=self._attempt_timeout(remaining),
                )
            except httpx.InvalidURL as e:
                raise ValidationError(f"Invalid URL '{request.url}': {e}") from e
            except httpx.UnsupportedProtocol as e:
                raise ValidationError(f"Unsupported protocol for '{request.url}': {e}") from e
            except httpx.TransportError as e:
                last_error = e
                timed_out = isinstance(e, httpx.TimeoutException)
                if not (isinstance(e, _NOT_SENT) or self._may_replay(request)):
                    break
                logger.warning(
                    "Attempt %d/%d to %s failed: %s",
                    attempt,
                    max_attempts,
                    request.url,
                    e,
                )
            except httpx.HTTPError as e:
                # Decoding failures and redirect loops are not retried.
                last_error = e
                timed_out = False
                break
            except RuntimeError as e:
                if self._client.is_closed:
                    raise IllegalStateError("HTTP client is closed") from e
                raise
            else:
                last_status = response.status_code
                if not self._should_retry_status(request, response.status_code):
                    return HttpResponse(
                        status_code=response.status_code,
                        headers=MappingProxyType(dict(response.headers)),
                        body=response.text,
                    )
                last_error = None
                timed_out = False
                logger.warning(
                    "Attempt %d/%d to %s returned HTTP %d",
                    attempt,
                    max_attempts,
                    request.url,
                    response.status_code,
                )

            if attempt < max_attempts:
                self._pause(attempt, deadline)

        logger.error("Giving up on %s after %d attempt(s)", request.url, attempt)
        if timed_out and last_error is None:
            message = f"Deadline of {request.timeout}s exceeded after {attempt} attempt(s)"
        elif last_error is not None:
            message = f"Request to {request.url} failed after {attempt} attempt(s): {last_error}"
        else:
            message = f"Request to {request.url} failed after {attempt} attempt(s) with HTTP {last_status}"
        raise TransportError(
            message,
            status_code=last_status,
            attempts=attempt,
            timed_out=timed_out,
        ) from last_error

    def _may_replay(self, request: HttpRequest) -> bool:
        return request.idempotent or self._policy.retry_writes

    def _should_retry_status(self, request: HttpRequest, status_code: int) -> bool:
        if status_code not in self._policy.retryable_status_codes:
            return False
        return status_code == 429 or self._may_replay(request)

    def _attempt_timeout(self, remaining: float | None) -> httpx.Timeout:
        if remaining is None:
            return httpx.Timeout(self._options.timeout, connect=self._options.connect_timeout)
        return httpx.Timeout(remaining, connect=min(self._options.connect_timeout, remaining))

    def _pause(self, attempt: int, deadline: float | None) -> None:
        delay = self._policy.backoff.delay(attempt)
        if deadline is not None:
            delay = min(delay, max(deadline - self._clock(), 0.0))
        if delay > 0:
            self._sleep(delay)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> RetryingTransport:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
