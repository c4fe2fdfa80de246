"""
CommandRunner - serializes commands, sends them and interprets responses.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, TypeVar

from . import __version__
from .codec import JsonCodec
from .command import ApiResponse, Command, ExecutionRecordBuilder
from .observers import CommandObserver, ObserverRegistry
from .options import DataAPIOptions
from .transport import HttpRequest, HttpResponse, RetryingTransport
from .types import ApiError, MappingError, TransportError, ValidationError

__all__ = ["CommandRunner"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTENT_TYPE_JSON = "application/json"


class CommandRunner:
    """
    Executes commands against one Data API endpoint.

    Every call produces exactly one ExecutionRecord, which is handed to
    the observers in the background before the result is returned or the
    error raised.

    Example:
        runner = CommandRunner(transport, registry, url, token="AstraCS:...")
        response = runner.run(Command("countDocuments", {"filter": {}}))
        response.status["count"]
    """

    def __init__(
        self,
        transport: RetryingTransport,
        observers: ObserverRegistry,
        endpoint: str,
        token: str | None = None,
        codec: JsonCodec | None = None,
    ) -> None:
        """
        Initialize a runner.

        Args:
            transport: Shared retrying transport.
            observers: Registry notified after each command.
            endpoint: URL the commands are posted to.
            token: Bearer token.
            codec: JSON codec, defaults to JsonCodec.
        """
        self._transport = transport
        self._observers = observers
        self._endpoint = endpoint.rstrip("/")
        self._token = token
        self._codec = codec or JsonCodec()

        options = transport.options
        caller_version = options.caller_version or __version__
        self._user_agent = f"{options.caller_name}/{caller_version} dataapi-python/{__version__}"

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def observers(self) -> ObserverRegistry:
        return self._observers

    @property
    def options(self) -> DataAPIOptions:
        return self._transport.options

    def child(self, segment: str) -> CommandRunner:
        """Runner for a sub-resource, inheriting the current observers."""
        return CommandRunner(
            self._transport,
            self._observers.copy(),
            f"{self._endpoint}/{segment}",
            self._token,
            self._codec,
        )

    def register_listener(self, name: str, observer: CommandObserver) -> None:
        self._observers.register(name, observer)

    def delete_listener(self, name: str) -> None:
        self._observers.unregister(name)

    def run(self, command: Command) -> ApiResponse:
        """
        Execute a command.

        Returns:
            The parsed response envelope.

        Raises:
            ValidationError: If the command cannot be serialized.
            TransportError: If the exchange failed after retries.
            ApiError: If the service reported errors.
            IllegalStateError: If the client was closed.
        """
        builder = ExecutionRecordBuilder(command)
        response: ApiResponse | None = None
        try:
            response = self._execute(command, builder)
        finally:
            record = builder.build()
            self._observers.notify(record)
            logger.debug(
                "%s -> HTTP %s in %.1fms",
                command.name,
                record.http_status_code,
                record.elapsed * 1000,
            )

        if response.errors:
            raise ApiError(response.errors, [record])
        return response

    def run_as(self, command: Command, target: Callable[[Any], T]) -> T:
        """
        Execute a command and map its payload with ``target``.

        ``target`` receives ``data.document`` or ``data.documents``, or the
        ``status`` object when the response has no ``data`` section.

        Raises:
            MappingError: If ``data`` holds neither document nor documents,
                or ``target`` rejects the payload.
        """
        response = self.run(command)
        if response.data is None:
            payload: Any = response.status
        elif response.data.document is not None:
            payload = response.data.document
        elif response.data.documents is not None:
            payload = response.data.documents
        else:
            raise MappingError(f"Cannot map response of '{command.name}': no documents returned")

        try:
            return target(payload)
        except (TypeError, ValueError, KeyError) as e:
            raise MappingError(f"Cannot map response of '{command.name}': {e}") from e

    def _execute(self, command: Command, builder: ExecutionRecordBuilder) -> ApiResponse:
        try:
            body = self._codec.marshal(command.body)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Cannot serialize command '{command.name}': {e}") from e

        request = HttpRequest(
            url=self._endpoint,
            body=body,
            headers=self._headers(command),
            timeout=command.timeout or self.options.timeout,
            idempotent=command.idempotent,
        )
        http_response = self._transport.send(request)
        builder.with_http_response(http_response)

        response = self._parse(command, http_response)
        builder.with_api_response(response)

        if not response.errors and not http_response.is_success:
            raise TransportError(
                f"'{command.name}' failed with HTTP {http_response.status_code}",
                status_code=http_response.status_code,
                attempts=1,
            )
        return response

    def _parse(self, command: Command, http_response: HttpResponse) -> ApiResponse:
        if not http_response.body.strip():
            return ApiResponse()
        try:
            payload = self._codec.unmarshal(http_response.body)
        except ValueError as e:
            if not http_response.is_success:
                raise TransportError(
                    f"'{command.name}' failed with HTTP {http_response.status_code}",
                    status_code=http_response.status_code,
                ) from e
            raise MappingError(f"Invalid JSON in response to '{command.name}': {e}") from e
        return ApiResponse.from_dict(payload)

    def _headers(self, command: Command) -> dict[str, str]:
        headers = {
            "Content-Type": CONTENT_TYPE_JSON,
            "Accept": CONTENT_TYPE_JSON,
            "User-Agent": self._user_agent,
            "X-Requested-With": self._user_agent,
            "X-Request-ID": str(uuid.uuid4()),
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
            headers["Token"] = self._token
        headers.update(command.headers)
        return headers

    def __repr__(self) -> str:
        return f"CommandRunner({self._endpoint!r})"
