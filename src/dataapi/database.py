"""
Database - one Data API namespace.

Hands out collections bound to the namespace endpoint and runs raw
namespace-level commands.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from .collection import Collection
from .command import ApiResponse, Command

if TYPE_CHECKING:
    from .client import DataAPIClient
    from .observers import CommandObserver
    from .runner import CommandRunner

__all__ = ["Database"]


class Database:
    """
    Data API namespace.

    Collections can be accessed using either attribute access or subscript
    notation. Observers registered on the database are inherited by the
    collections created afterwards.

    Example:
        db = client["myapp"]

        # Access collections
        users = db.users
        orders = db["orders"]

        # Raw command
        db.run_command(Command("findCollections", {}))
    """

    __slots__ = ("_runner", "_client", "_name", "_collections")

    def __init__(
        self,
        runner: CommandRunner,
        client: DataAPIClient,
        name: str,
    ) -> None:
        """
        Initialize a database.

        Args:
            runner: Runner bound to the namespace endpoint.
            client: Parent DataAPIClient instance.
            name: Namespace name.
        """
        self._runner = runner
        self._client = client
        self._name = name
        self._collections: dict[str, Collection[Any]] = {}

    @property
    def name(self) -> str:
        """Get the namespace name."""
        return self._name

    @property
    def client(self) -> DataAPIClient:
        """Get the parent client."""
        return self._client

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def register_listener(self, name: str, observer: CommandObserver) -> None:
        """Observe namespace commands and those of collections created later."""
        self._runner.register_listener(name, observer)

    def delete_listener(self, name: str) -> None:
        self._runner.delete_listener(name)

    def __getitem__(self, name: str) -> Collection[Any]:
        """
        Get a collection by name using subscript notation.

        Example:
            users = db["users"]
        """
        if name not in self._collections:
            self._collections[name] = Collection(self._runner.child(name), self, name)
        return self._collections[name]

    def __getattr__(self, name: str) -> Collection[Any]:
        """
        Get a collection by name using attribute access.

        Example:
            users = db.users
        """
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

        return self[name]

    def get_collection(self, name: str) -> Collection[Any]:
        """Get a collection by name."""
        return self[name]

    def run_command(self, command: Command | str, payload: Mapping[str, Any] | None = None) -> ApiResponse:
        """
        Run a raw command against the namespace endpoint.

        Args:
            command: A Command, or a command name combined with ``payload``.
            payload: Command payload when ``command`` is a name.
        """
        if isinstance(command, str):
            command = Command(command, payload or {})
        return self._runner.run(command)

    def __repr__(self) -> str:
        return f"Database({self._name!r})"
