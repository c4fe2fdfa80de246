"""
Type definitions for the dataapi SDK.

Provides the result types returned by collection operations and the
exception hierarchy raised by the command engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from .bulk import ChunkOutcome
    from .command import ApiResponse, ExecutionRecord


@dataclass(frozen=True)
class InsertOneResult:
    """
    Result of an insert_one operation.

    Attributes:
        inserted_id: The _id of the inserted document.
    """

    inserted_id: Any


@dataclass(frozen=True)
class InsertManyResult:
    """
    Result of an insert_many operation.

    Attributes:
        inserted_ids: The _ids of the inserted documents. In ordered mode
            they follow the caller-supplied order; in unordered mode they
            are grouped by chunk completion.
    """

    inserted_ids: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class UpdateResult:
    """
    Result of an update_one or update_many operation.

    Attributes:
        matched_count: Number of documents matched.
        modified_count: Number of documents modified.
        upserted_id: The _id of the upserted document (if any).
    """

    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Any = None


@dataclass(frozen=True)
class DeleteResult:
    """Result of a delete_one or delete_many operation."""

    deleted_count: int = 0


@dataclass(frozen=True)
class BulkWriteResult:
    """
    Result of a bulk_write operation.

    Attributes:
        per_chunk_responses: The responses of each chunk, in chunk
            completion order (input order when the bulk was ordered).
    """

    per_chunk_responses: list[list[ApiResponse]] = field(default_factory=list)

    @property
    def responses(self) -> list[ApiResponse]:
        """All responses, flattened."""
        return [r for chunk in self.per_chunk_responses for r in chunk]


# Type aliases for clarity
Document = Mapping[str, Any]
MutableDocument = dict[str, Any]
Filter = Mapping[str, Any]
Update = Mapping[str, Any]
Projection = Mapping[str, Any] | Sequence[str] | None
Sort = Mapping[str, int] | None


class DataAPIError(Exception):
    """Base exception for Data API operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DataAPIError):
    """Client-side input was rejected before anything was sent."""

    pass


class TransportError(DataAPIError):
    """
    Raised when the HTTP exchange could not be completed.

    Attributes:
        status_code: Last HTTP status received, if any.
        attempts: Number of attempts performed.
        timed_out: True when the call deadline expired.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 0,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts
        self.timed_out = timed_out


class ApiError(DataAPIError):
    """
    Raised when the service answered with a non-empty ``errors`` array.

    Attributes:
        errors: The raw error objects returned by the service.
        execution_records: Audit records of the calls that failed.
    """

    def __init__(
        self,
        errors: Sequence[Mapping[str, Any]],
        execution_records: Sequence[ExecutionRecord] = (),
    ) -> None:
        self.errors = list(errors)
        self.execution_records = list(execution_records)
        first = self.errors[0] if self.errors else {}
        message = first.get("message", "Data API returned an error")
        if first.get("errorCode"):
            message = f"{message} ({first['errorCode']})"
        super().__init__(message)

    @property
    def error_codes(self) -> list[str]:
        """Error codes reported by the service, in response order."""
        return [e["errorCode"] for e in self.errors if e.get("errorCode")]


class TooManyResultsError(DataAPIError):
    """Raised when a count exceeds the configured or server-side cap."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Document count exceeds {limit} (got at least {count})")
        self.count = count
        self.limit = limit


class MappingError(DataAPIError):
    """Raised when a response cannot be mapped to the requested shape."""

    pass


class IllegalStateError(DataAPIError):
    """Raised when a single-use cursor is consumed more than once."""

    pass


class AggregatedApiError(DataAPIError):
    """
    Raised when one or more chunks of a bulk operation failed.

    Carries every chunk outcome so callers can see what was applied,
    what failed and what was never attempted.

    Attributes:
        outcomes: One ChunkOutcome per input chunk, in chunk order for
            ordered bulks and completion order for unordered ones.
        partial_result: Operation-specific result built from the
            successful chunks (e.g. an InsertManyResult).
    """

    def __init__(
        self,
        outcomes: Sequence[ChunkOutcome[Any, Any]],
        partial_result: Any = None,
    ) -> None:
        self.outcomes = list(outcomes)
        self.partial_result = partial_result
        failed = self.failed
        super().__init__(
            f"{len(failed)} of {len(self.outcomes)} chunk(s) failed: "
            + "; ".join(f"chunk {o.index}: {o.error}" for o in failed)
        )

    @property
    def succeeded(self) -> list[ChunkOutcome[Any, Any]]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[ChunkOutcome[Any, Any]]:
        return [o for o in self.outcomes if o.error is not None]

    @property
    def not_attempted(self) -> list[ChunkOutcome[Any, Any]]:
        return [o for o in self.outcomes if not o.attempted]

    @property
    def execution_records(self) -> list[ExecutionRecord]:
        """Audit records of every failed chunk that reached the service."""
        records: list[ExecutionRecord] = []
        for outcome in self.failed:
            records.extend(getattr(outcome.error, "execution_records", ()))
        return records
