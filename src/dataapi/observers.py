"""
Observers - listeners notified in the background after every command.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from typing import Protocol, runtime_checkable

from .command import ExecutionRecord

__all__ = ["CommandObserver", "LoggingCommandObserver", "ObserverRegistry"]

logger = logging.getLogger(__name__)


@runtime_checkable
class CommandObserver(Protocol):
    """Anything with an ``on_command(record)`` method can observe commands."""

    def on_command(self, record: ExecutionRecord) -> None: ...


class LoggingCommandObserver:
    """
    Observer writing one log line per executed command.

    Example:
        client.register_listener("log", LoggingCommandObserver(logging.INFO))
    """

    def __init__(self, level: int = logging.DEBUG, logger_name: str | None = None) -> None:
        self._level = level
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    def on_command(self, record: ExecutionRecord) -> None:
        errors = record.response.errors if record.response else []
        self._logger.log(
            self._level,
            "command=%s http=%s elapsed=%.1fms errors=%d",
            record.command.name,
            record.http_status_code,
            record.elapsed * 1000,
            len(errors),
        )


class ObserverRegistry:
    """
    Name-keyed set of observers.

    Registration and removal are safe while a notification pass is in
    flight: ``notify`` works on a snapshot taken under the lock. Every
    observer runs as its own task on the executor and the caller never
    waits for it; observer exceptions are logged and discarded.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor
        self._observers: dict[str, CommandObserver] = {}
        self._lock = threading.Lock()

    def register(self, name: str, observer: CommandObserver) -> None:
        """Add or replace the observer registered under ``name``."""
        if not callable(getattr(observer, "on_command", None)):
            raise TypeError(f"Observer {name!r} has no on_command method")
        with self._lock:
            self._observers[name] = observer

    def unregister(self, name: str) -> None:
        """Remove an observer; unknown names are ignored."""
        with self._lock:
            self._observers.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._observers)

    def copy(self) -> ObserverRegistry:
        """Independent registry starting with the same observers."""
        child = ObserverRegistry(self._executor)
        with self._lock:
            child._observers = dict(self._observers)
        return child

    def notify(self, record: ExecutionRecord) -> list[Future[None]]:
        """
        Schedule one background task per observer and return at once.

        The returned futures exist for tests; production callers ignore them.
        """
        with self._lock:
            snapshot = list(self._observers.items())

        futures: list[Future[None]] = []
        for name, observer in snapshot:
            try:
                futures.append(self._executor.submit(self._deliver, name, observer, record))
            except RuntimeError:
                # Executor already shut down (client closed).
                logger.debug("Dropping notification for observer %r", name)
        return futures

    @staticmethod
    def _deliver(name: str, observer: CommandObserver, record: ExecutionRecord) -> None:
        try:
            observer.on_command(record)
        except Exception:
            logger.exception("Observer %r failed on command %s", name, record.command.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._observers
