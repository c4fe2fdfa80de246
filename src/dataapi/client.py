"""
DataAPIClient - root of the dataapi SDK.

Owns the shared retrying transport and the background executors used for
observer notification and ``*_async`` operations.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from types import TracebackType

import httpx

from .database import Database
from .observers import CommandObserver, ObserverRegistry
from .options import DataAPIOptions
from .runner import CommandRunner
from .transport import RetryingTransport
from .types import IllegalStateError

__all__ = ["DataAPIClient"]

DEFAULT_ENDPOINT = "http://localhost:8181"


class DataAPIClient:
    """
    Data API client.

    Databases (namespaces) can be accessed using either attribute access
    or subscript notation.

    Example:
        # Create client
        client = DataAPIClient("AstraCS:...", "https://db.example.com")

        # Access databases
        db = client["myapp"]
        db = client.myapp

        # Close connection
        client.close()

        # Or use as context manager
        with DataAPIClient(token) as client:
            db = client["myapp"]
            ...
    """

    __slots__ = (
        "_token",
        "_endpoint",
        "_options",
        "_transport",
        "_observer_executor",
        "_async_executor",
        "_runner",
        "_databases",
        "_closed",
    )

    def __init__(
        self,
        token: str | None = None,
        api_endpoint: str | None = None,
        options: DataAPIOptions | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            token: Application token. If not provided, uses the
                DATA_API_TOKEN environment variable.
            api_endpoint: Base URL of the Data API. If not provided, uses
                DATA_API_ENDPOINT, then http://localhost:8181.
            options: Client options.
            http_client: Pre-built httpx client, mainly for tests.
        """
        self._token = token or os.environ.get("DATA_API_TOKEN")
        self._endpoint = (api_endpoint or os.environ.get("DATA_API_ENDPOINT", DEFAULT_ENDPOINT)).rstrip("/")
        self._options = options or DataAPIOptions()
        self._transport = RetryingTransport(self._options, client=http_client)
        self._observer_executor = ThreadPoolExecutor(
            max_workers=self._options.observer_workers,
            thread_name_prefix="dataapi-observer",
        )
        self._async_executor = ThreadPoolExecutor(
            max_workers=self._options.async_workers,
            thread_name_prefix="dataapi-async",
        )
        self._runner = CommandRunner(
            self._transport,
            ObserverRegistry(self._observer_executor),
            f"{self._endpoint}/api/json/{self._options.api_version}",
            self._token,
        )
        self._databases: dict[str, Database] = {}
        self._closed = False

    @property
    def api_endpoint(self) -> str:
        """Get the base URL."""
        return self._endpoint

    @property
    def options(self) -> DataAPIOptions:
        return self._options

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def async_executor(self) -> ThreadPoolExecutor:
        """Executor running the ``*_async`` operations."""
        return self._async_executor

    def register_listener(self, name: str, observer: CommandObserver) -> None:
        """Observe the commands of databases created afterwards."""
        self._runner.register_listener(name, observer)

    def delete_listener(self, name: str) -> None:
        self._runner.delete_listener(name)

    def _ensure_open(self) -> None:
        if self._closed:
            raise IllegalStateError("Client is closed")

    def __getitem__(self, name: str) -> Database:
        """
        Get a database by name using subscript notation.

        Example:
            db = client["myapp"]
        """
        self._ensure_open()

        if name not in self._databases:
            self._databases[name] = Database(self._runner.child(name), self, name)
        return self._databases[name]

    def __getattr__(self, name: str) -> Database:
        """
        Get a database by name using attribute access.

        Example:
            db = client.myapp
        """
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

        return self[name]

    def get_database(self, name: str) -> Database:
        """Get a database by name."""
        return self[name]

    def close(self) -> None:
        """
        Close the HTTP client and stop the background executors.

        Pending observer notifications are dropped.
        """
        if self._closed:
            return
        self._closed = True
        self._async_executor.shutdown(wait=True)
        self._observer_executor.shutdown(wait=False, cancel_futures=True)
        self._transport.close()
        self._databases.clear()

    def __enter__(self) -> DataAPIClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        return f"DataAPIClient({self._endpoint!r}, {status})"
