"""
Command - the unit of work sent to the Data API, its response envelope
and the audit record produced for every call.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from .types import MappingError, ValidationError

if TYPE_CHECKING:
    from .transport import HttpResponse

__all__ = [
    "ApiResponse",
    "Command",
    "ExecutionRecord",
    "ExecutionRecordBuilder",
    "ResponseData",
]

# Commands that can be replayed without changing server state.
IDEMPOTENT_COMMANDS = frozenset(
    {"find", "findOne", "countDocuments", "estimatedDocumentCount"}
)


@dataclass(frozen=True)
class Command:
    """
    Immutable description of one remote operation.

    The payload and headers are copied on construction, so later changes
    to the caller's objects never leak into an in-flight command.

    Example:
        cmd = Command("findOne", {"filter": {"_id": "42"}})
        cmd.body  # {"findOne": {"filter": {"_id": "42"}}}
    """

    name: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("Command name must not be empty")
        if self.timeout is not None and self.timeout <= 0:
            raise ValidationError("Command timeout must be positive")
        object.__setattr__(self, "payload", MappingProxyType(copy.deepcopy(dict(self.payload))))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def idempotent(self) -> bool:
        """True when replaying the command cannot duplicate its effects."""
        return self.name in IDEMPOTENT_COMMANDS

    @property
    def body(self) -> dict[str, Any]:
        """JSON body sent over the wire: ``{name: payload}``."""
        return {self.name: copy.deepcopy(dict(self.payload))}

    def with_timeout(self, timeout: float | None) -> Command:
        """Return a copy of this command with another deadline."""
        return Command(self.name, self.payload, self.headers, timeout)

    def __repr__(self) -> str:
        return f"Command({self.name!r})"


@dataclass(frozen=True)
class ResponseData:
    """The ``data`` section of a response envelope."""

    document: dict[str, Any] | None = None
    documents: list[dict[str, Any]] | None = None
    next_page_state: str | None = None


@dataclass(frozen=True)
class ApiResponse:
    """
    Parsed response envelope.

    A non-empty ``errors`` list means the call failed, whatever the HTTP
    status was.
    """

    status: dict[str, Any] | None = None
    data: ResponseData | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Any) -> ApiResponse:
        """
        Build an envelope from a decoded JSON body.

        Raises:
            MappingError: If the body is not a JSON object.
        """
        if not isinstance(payload, dict):
            raise MappingError(f"Expected a JSON object, got {type(payload).__name__}")

        data = None
        raw_data = payload.get("data")
        if isinstance(raw_data, dict):
            data = ResponseData(
                document=raw_data.get("document"),
                documents=raw_data.get("documents"),
                next_page_state=raw_data.get("nextPageState"),
            )

        errors = payload.get("errors") or []
        if not isinstance(errors, list):
            errors = [errors]
        return cls(
            status=payload.get("status"),
            data=data,
            errors=[e if isinstance(e, dict) else {"message": str(e)} for e in errors],
        )

    def status_value(self, key: str, default: Any = None) -> Any:
        """Read one field of ``status``."""
        if not self.status:
            return default
        return self.status.get(key, default)


@dataclass(frozen=True)
class ExecutionRecord:
    """
    Immutable audit snapshot of one command execution.

    Attributes:
        command: The command that was executed.
        response: Parsed envelope, or None if no response was parsed.
        http_status_code: HTTP status, or None if no response was received.
        http_headers: Response headers.
        started_at: UTC timestamp of the call start.
        elapsed: Wall-clock duration of the call, in seconds.
    """

    command: Command
    response: ApiResponse | None
    http_status_code: int | None
    http_headers: Mapping[str, str]
    started_at: datetime
    elapsed: float

    @property
    def failed(self) -> bool:
        return self.response is None or bool(self.response.errors)


class ExecutionRecordBuilder:
    """Accumulates the fields of an ExecutionRecord while a call runs."""

    def __init__(self, command: Command) -> None:
        self._command = command
        self._started_at = datetime.now(timezone.utc)
        self._started = time.monotonic()
        self._finished: float | None = None
        self._response: ApiResponse | None = None
        self._http_status_code: int | None = None
        self._http_headers: Mapping[str, str] = MappingProxyType({})

    def with_http_response(self, response: HttpResponse) -> ExecutionRecordBuilder:
        self._finished = time.monotonic()
        self._http_status_code = response.status_code
        self._http_headers = MappingProxyType(dict(response.headers))
        return self

    def with_api_response(self, response: ApiResponse) -> ExecutionRecordBuilder:
        self._response = response
        return self

    def build(self) -> ExecutionRecord:
        finished = self._finished if self._finished is not None else time.monotonic()
        return ExecutionRecord(
            command=self._command,
            response=self._response,
            http_status_code=self._http_status_code,
            http_headers=self._http_headers,
            started_at=self._started_at,
            elapsed=finished - self._started,
        )
