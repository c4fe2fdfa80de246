"""
Options - validated, immutable configuration for the client and bulk calls.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Protocol

from .types import ValidationError

__all__ = [
    "BackoffPolicy",
    "BulkOptions",
    "DataAPIOptions",
    "ExponentialBackoff",
    "FixedBackoff",
    "RetryPolicy",
]

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v1"
DEFAULT_CALLER_NAME = "dataapi-python"
DEFAULT_TIMEOUT = 20.0
DEFAULT_CONNECT_TIMEOUT = 20.0
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY = 0.1
DEFAULT_MAX_DOCUMENTS_COUNT = 1000
DEFAULT_MAX_PAGE_SIZE = 20
DEFAULT_MAX_CHUNK_SIZE = 20


class BackoffPolicy(Protocol):
    """Computes how long to wait before retry number ``attempt`` (1-based)."""

    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True)
class FixedBackoff:
    """Wait the same amount of time before every retry."""

    seconds: float = DEFAULT_RETRY_DELAY

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValidationError("Backoff delay must be >= 0")

    def delay(self, attempt: int) -> float:
        return self.seconds


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Exponential backoff with optional proportional jitter.

    The delay before retry ``n`` is ``initial * multiplier ** (n - 1)``,
    capped at ``max_delay``, then randomized by +/- ``jitter``.
    """

    initial: float = DEFAULT_RETRY_DELAY
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.initial < 0 or self.max_delay < 0:
            raise ValidationError("Backoff delays must be >= 0")
        if self.multiplier < 1:
            raise ValidationError("Backoff multiplier must be >= 1")
        if not 0 <= self.jitter <= 1:
            raise ValidationError("Backoff jitter must be between 0 and 1")

    def delay(self, attempt: int) -> float:
        base = min(self.initial * self.multiplier ** (attempt - 1), self.max_delay)
        if self.jitter:
            base *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(base, 0.0)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy of the transport.

    Attributes:
        retry_count: Retries after the first attempt (attempts = retry_count + 1).
        backoff: Policy computing the pause between attempts.
        retryable_status_codes: HTTP statuses treated as transient.
        retry_writes: Retry non-idempotent commands on failures that may
            have reached the service (read timeouts, resets, 5xx).
    """

    retry_count: int = DEFAULT_RETRY_COUNT
    backoff: BackoffPolicy = field(default_factory=FixedBackoff)
    retryable_status_codes: tuple[int, ...] = (429, 502, 503, 504)
    retry_writes: bool = False

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValidationError("retry_count must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.retry_count + 1


@dataclass(frozen=True)
class DataAPIOptions:
    """
    Client-wide options.

    Attributes:
        api_version: Data API version segment of the endpoint path.
        caller_name: Name reported in the User-Agent header.
        caller_version: Version reported in the User-Agent header.
        timeout: Default deadline of a call, in seconds.
        connect_timeout: Connection establishment timeout, in seconds.
        retry: Transport retry policy.
        max_documents_count: Upper bound accepted by count_documents.
        max_page_size: Documents returned per find page.
        max_documents_in_insert: Largest chunk allowed in insert_many.
        observer_workers: Threads used to notify observers.
        async_workers: Threads backing the ``*_async`` operations.
    """

    api_version: str = DEFAULT_API_VERSION
    caller_name: str = DEFAULT_CALLER_NAME
    caller_version: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    max_documents_count: int = DEFAULT_MAX_DOCUMENTS_COUNT
    max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    max_documents_in_insert: int = DEFAULT_MAX_CHUNK_SIZE
    observer_workers: int = 4
    async_workers: int = 8

    def __post_init__(self) -> None:
        if self.timeout <= 0 or self.connect_timeout <= 0:
            raise ValidationError("Timeouts must be positive")
        for name in (
            "max_documents_count",
            "max_page_size",
            "max_documents_in_insert",
            "observer_workers",
            "async_workers",
        ):
            if getattr(self, name) <= 0:
                raise ValidationError(f"{name} must be a positive integer")

        if self.max_documents_count > DEFAULT_MAX_DOCUMENTS_COUNT:
            logger.warning(
                "max_documents_count above %d may impact performance",
                DEFAULT_MAX_DOCUMENTS_COUNT,
            )
        if self.max_page_size > DEFAULT_MAX_PAGE_SIZE:
            logger.warning(
                "max_page_size above %d may be rejected by the server",
                DEFAULT_MAX_PAGE_SIZE,
            )
        if self.max_documents_in_insert > DEFAULT_MAX_CHUNK_SIZE:
            logger.warning(
                "max_documents_in_insert above %d may be rejected by the server",
                DEFAULT_MAX_CHUNK_SIZE,
            )


@dataclass(frozen=True)
class BulkOptions:
    """
    Options of a chunked bulk call.

    Attributes:
        ordered: Run chunks sequentially and stop at the first failure.
        concurrency: Maximum chunks in flight (unordered only).
        chunk_size: Items per chunk.
        timeout: Deadline of the whole bulk call, in seconds.
    """

    ordered: bool = True
    concurrency: int = 1
    chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.concurrency <= 0:
            raise ValidationError("concurrency must be a positive integer")
        if self.chunk_size <= 0:
            raise ValidationError("chunk_size must be a positive integer")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError("timeout must be positive")
        if self.ordered and self.concurrency > 1:
            raise ValidationError("Ordered bulk operations cannot run with concurrency > 1")
