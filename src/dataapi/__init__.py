"""
dataapi - Python client for JSON document Data APIs.

This package turns document operations into commands posted to a Data API
endpoint, with support for:
- CRUD operations (insert, find, update, delete, count)
- Retries with pluggable backoff, aware of command idempotency
- Chunked bulk inserts and bulk writes, ordered or concurrent
- Single-use, lazily paginated cursors
- Command observers notified in the background with an audit record

Example usage:
    from dataapi import BulkOptions, DataAPIClient, LoggingCommandObserver

    with DataAPIClient("AstraCS:...", "https://db.example.com") as client:
        db = client["myapp"]
        db.register_listener("log", LoggingCommandObserver())
        users = db["users"]

        # Insert documents
        result = users.insert_one({"name": "Alice", "email": "alice@example.com"})
        print(result.inserted_id)

        users.insert_many(people, BulkOptions(ordered=False, concurrency=4))

        # Find documents
        user = users.find_one({"email": "alice@example.com"})

        # Iterate over results
        for user in users.find({"status": "active"}):
            print(user["name"])

        # Update documents
        users.update_one({"email": "alice@example.com"}, {"$set": {"status": "vip"}})

        # Delete documents
        users.delete_one({"email": "alice@example.com"})
"""

from __future__ import annotations

__version__ = "0.1.0"

from .bulk import BulkExecutor, ChunkOutcome
from .client import DataAPIClient
from .codec import JsonCodec
from .collection import Collection
from .command import ApiResponse, Command, ExecutionRecord
from .cursor import Cursor, Page
from .database import Database
from .observers import CommandObserver, LoggingCommandObserver, ObserverRegistry
from .options import BulkOptions, DataAPIOptions, ExponentialBackoff, FixedBackoff, RetryPolicy
from .runner import CommandRunner
from .transport import HttpRequest, HttpResponse, RetryingTransport
from .types import (
    AggregatedApiError,
    ApiError,
    BulkWriteResult,
    DataAPIError,
    DeleteResult,
    IllegalStateError,
    InsertManyResult,
    InsertOneResult,
    MappingError,
    TooManyResultsError,
    TransportError,
    UpdateResult,
    ValidationError,
)

__all__ = [
    # Main classes
    "DataAPIClient",
    "Database",
    "Collection",
    "Cursor",
    "Page",
    # Engine
    "Command",
    "ApiResponse",
    "ExecutionRecord",
    "CommandRunner",
    "RetryingTransport",
    "HttpRequest",
    "HttpResponse",
    "JsonCodec",
    "BulkExecutor",
    "ChunkOutcome",
    "CommandObserver",
    "LoggingCommandObserver",
    "ObserverRegistry",
    # Options
    "DataAPIOptions",
    "BulkOptions",
    "RetryPolicy",
    "FixedBackoff",
    "ExponentialBackoff",
    # Result types
    "InsertOneResult",
    "InsertManyResult",
    "UpdateResult",
    "DeleteResult",
    "BulkWriteResult",
    # Exceptions
    "DataAPIError",
    "ValidationError",
    "TransportError",
    "ApiError",
    "TooManyResultsError",
    "MappingError",
    "AggregatedApiError",
    "IllegalStateError",
    # Version
    "__version__",
]
