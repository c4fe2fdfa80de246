"""
Collection - document operations on one Data API collection.

Every operation is a command executed by the collection's runner;
insert_many and bulk_write go through the bulk executor.
"""

from __future__ import annotations

import uuid
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Generic, Sequence, TypeVar

from .bulk import BulkExecutor, ChunkOutcome
from .command import ApiResponse, Command
from .cursor import Cursor, Page
from .options import BulkOptions
from .types import (
    BulkWriteResult,
    DeleteResult,
    InsertManyResult,
    InsertOneResult,
    TooManyResultsError,
    UpdateResult,
    ValidationError,
)

if TYPE_CHECKING:
    from .database import Database
    from .observers import CommandObserver
    from .runner import CommandRunner
    from .types import Filter, Projection, Sort, Update

T = TypeVar("T", bound=dict[str, Any])
V = TypeVar("V")

__all__ = ["Collection"]


class Collection(Generic[T]):
    """
    Data API collection with blocking CRUD operations.

    Each blocking operation that may take long also has an ``*_async``
    variant returning a ``concurrent.futures.Future``.

    Example:
        users = db["users"]

        # Insert
        result = users.insert_one({"name": "Alice"})
        print(result.inserted_id)

        # Chunked insert, 4 chunks in flight
        users.insert_many(docs, BulkOptions(ordered=False, concurrency=4))

        # Find
        user = users.find_one({"name": "Alice"})
        for user in users.find({"status": "active"}):
            print(user)

        # Update
        users.update_one({"name": "Alice"}, {"$set": {"status": "vip"}})

        # Delete
        users.delete_one({"name": "Alice"})
    """

    __slots__ = ("_runner", "_database", "_name", "_full_name", "_bulk")

    def __init__(
        self,
        runner: CommandRunner,
        database: Database,
        name: str,
    ) -> None:
        """
        Initialize a collection.

        Args:
            runner: Runner bound to the collection endpoint.
            database: Parent database instance.
            name: Collection name.
        """
        self._runner = runner
        self._database = database
        self._name = name
        self._full_name = f"{database.name}.{name}"
        self._bulk = BulkExecutor()

    @property
    def name(self) -> str:
        """Get the collection name."""
        return self._name

    @property
    def full_name(self) -> str:
        """Get the full collection name (namespace.collection)."""
        return self._full_name

    @property
    def database(self) -> Database:
        """Get the parent database."""
        return self._database

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def register_listener(self, name: str, observer: CommandObserver) -> None:
        """Observe the commands of this collection."""
        self._runner.register_listener(name, observer)

    def delete_listener(self, name: str) -> None:
        self._runner.delete_listener(name)

    def _generate_id(self) -> str:
        """Generate a unique document ID."""
        return str(uuid.uuid4())

    def _with_id(self, document: T) -> dict[str, Any]:
        doc = dict(document)
        if "_id" not in doc:
            doc["_id"] = self._generate_id()
        return doc

    def _submit(self, fn: Callable[..., V], *args: Any) -> Future[V]:
        return self._database.client.async_executor.submit(fn, *args)

    # Inserts

    def insert_one(self, document: T) -> InsertOneResult:
        """
        Insert a single document.

        Args:
            document: The document to insert. An ``_id`` is generated when
                the document has none.

        Returns:
            InsertOneResult with the inserted ID.

        Raises:
            ApiError: If the service rejected the document.
        """
        doc = self._with_id(document)
        response = self._runner.run(Command("insertOne", {"document": doc}))
        inserted = response.status_value("insertedIds") or [doc["_id"]]
        return InsertOneResult(inserted_id=inserted[0])

    def insert_one_async(self, document: T) -> Future[InsertOneResult]:
        return self._submit(self.insert_one, document)

    def insert_many(
        self,
        documents: Sequence[T],
        options: BulkOptions | None = None,
    ) -> InsertManyResult:
        """
        Insert documents in chunks.

        Args:
            documents: Documents to insert.
            options: Ordering, concurrency and chunk size. Defaults to an
                ordered insert with chunks of ``max_documents_in_insert``.

        Returns:
            InsertManyResult with the inserted IDs.

        Raises:
            ValidationError: If the chunk size exceeds the client limit.
            AggregatedApiError: If one or more chunks failed. Its
                ``partial_result`` holds the IDs of the successful chunks.
        """
        max_chunk = self._runner.options.max_documents_in_insert
        if options is None:
            options = BulkOptions(chunk_size=max_chunk)
        elif options.chunk_size > max_chunk:
            raise ValidationError(
                f"chunk_size {options.chunk_size} exceeds the maximum of {max_chunk} documents per insert"
            )

        docs = [self._with_id(document) for document in documents]
        if not docs:
            return InsertManyResult()

        def run_chunk(chunk: list[dict[str, Any]], remaining: float | None) -> list[Any]:
            command = Command(
                "insertMany",
                {"documents": chunk, "options": {"ordered": options.ordered}},
                timeout=remaining,
            )
            response = self._runner.run(command)
            return response.status_value("insertedIds") or [doc["_id"] for doc in chunk]

        outcomes = self._bulk.execute(docs, options, run_chunk, summarize=_inserted_ids)
        return _inserted_ids(outcomes)

    def insert_many_async(
        self,
        documents: Sequence[T],
        options: BulkOptions | None = None,
    ) -> Future[InsertManyResult]:
        return self._submit(self.insert_many, documents, options)

    # Reads

    def find_one(
        self,
        filter: Filter | None = None,
        projection: Projection = None,
        sort: Sort = None,
    ) -> T | None:
        """
        Find a single document.

        Returns:
            The matching document, or None if not found.
        """
        cursor: Cursor[T] = Cursor(self._runner, filter, projection)
        payload: dict[str, Any] = dict(cursor.command().payload)
        payload.pop("options", None)
        if sort:
            payload["sort"] = dict(sort)

        response = self._runner.run(Command("findOne", payload))
        if response.data is None:
            return None
        return response.data.document  # type: ignore[return-value]

    def find(
        self,
        filter: Filter | None = None,
        projection: Projection = None,
    ) -> Cursor[T]:
        """
        Find documents matching the filter.

        Returns:
            Single-use cursor fetching pages on demand.

        Example:
            for doc in collection.find({"status": "active"}):
                print(doc)

            # With chaining
            docs = collection.find({}).sort({"name": 1}).limit(10).to_list()
        """
        return Cursor[T](self._runner, filter, projection)

    def find_page(
        self,
        filter: Filter | None = None,
        projection: Projection = None,
        sort: Sort = None,
        page_state: str | None = None,
    ) -> Page[T]:
        """
        Fetch one page of results.

        Args:
            page_state: Token returned with the previous page.
        """
        return Cursor[T](self._runner, filter, projection).sort(sort).fetch_page(page_state)

    def distinct(self, key: str, filter: Filter | None = None) -> list[Any]:
        """
        Distinct values of a field, computed client-side.

        Dotted keys reach into sub-documents; list values are flattened.
        """
        values: list[Any] = []
        seen: set[Any] = set()
        for doc in self.find(filter, projection=[key]):
            for value in _extract(doc, key.split(".")):
                marker = _hashable(value)
                if marker not in seen:
                    seen.add(marker)
                    values.append(value)
        return values

    def count_documents(self, filter: Filter | None = None, upper_bound: int | None = None) -> int:
        """
        Count documents matching the filter.

        Args:
            filter: Query filter.
            upper_bound: Highest count the caller accepts. Defaults to
                ``max_documents_count`` and may not exceed it.

        Raises:
            ValidationError: If upper_bound is out of range.
            TooManyResultsError: If more than upper_bound documents match.
        """
        limit = self._runner.options.max_documents_count
        if upper_bound is None:
            upper_bound = limit
        if upper_bound <= 0 or upper_bound > limit:
            raise ValidationError(f"upper_bound must be between 1 and {limit}")

        response = self._runner.run(Command("countDocuments", {"filter": dict(filter or {})}))
        count = _count(response, "count")
        if response.status_value("moreData", False) or count > upper_bound:
            raise TooManyResultsError(count, upper_bound)
        return count

    def count_documents_async(
        self, filter: Filter | None = None, upper_bound: int | None = None
    ) -> Future[int]:
        return self._submit(self.count_documents, filter, upper_bound)

    def estimated_document_count(self) -> int:
        """Fast, approximate number of documents in the collection."""
        response = self._runner.run(Command("estimatedDocumentCount", {}))
        return _count(response, "count")

    # Updates

    def update_one(
        self,
        filter: Filter,
        update: Update,
        upsert: bool = False,
    ) -> UpdateResult:
        """
        Update a single document.

        Args:
            filter: Query filter to match the document.
            update: Update operations ($set, $unset, $inc, etc.).
            upsert: If True, insert if no document matches.

        Returns:
            UpdateResult with match/modify counts.
        """
        command = Command(
            "updateOne",
            {"filter": dict(filter), "update": dict(update), "options": {"upsert": upsert}},
        )
        return _update_result(self._runner.run(command))

    def update_one_async(
        self, filter: Filter, update: Update, upsert: bool = False
    ) -> Future[UpdateResult]:
        return self._submit(self.update_one, filter, update, upsert)

    def update_many(
        self,
        filter: Filter,
        update: Update,
        upsert: bool = False,
    ) -> UpdateResult:
        """
        Update every matching document.

        The service processes updateMany page by page; this method follows
        ``nextPageState`` until done and sums the counts.
        """
        matched = modified = 0
        upserted_id = None
        page_state: str | None = None
        while True:
            options: dict[str, Any] = {"upsert": upsert}
            if page_state:
                options["pageState"] = page_state
            command = Command(
                "updateMany",
                {"filter": dict(filter), "update": dict(update), "options": options},
            )
            response = self._runner.run(command)
            page = _update_result(response)
            matched += page.matched_count
            modified += page.modified_count
            upserted_id = page.upserted_id or upserted_id
            page_state = response.status_value("nextPageState")
            if not page_state:
                break
        return UpdateResult(matched_count=matched, modified_count=modified, upserted_id=upserted_id)

    def replace_one(
        self,
        filter: Filter,
        replacement: T,
        upsert: bool = False,
    ) -> UpdateResult:
        """
        Replace a single document.

        Returns:
            UpdateResult with match/modify counts.
        """
        command = Command(
            "findOneAndReplace",
            {
                "filter": dict(filter),
                "replacement": dict(replacement),
                "options": {"upsert": upsert, "returnDocument": "before"},
            },
        )
        return _update_result(self._runner.run(command))

    # Deletes

    def delete_one(self, filter: Filter) -> DeleteResult:
        """Delete a single document."""
        response = self._runner.run(Command("deleteOne", {"filter": dict(filter)}))
        return DeleteResult(deleted_count=_count(response, "deletedCount"))

    def delete_many(self, filter: Filter | None = None) -> DeleteResult:
        """
        Delete every matching document.

        The service deletes in batches and reports ``moreData`` while
        matches remain; the command is repeated until it does not.
        An empty filter deletes everything and reports -1.
        """
        total = 0
        while True:
            response = self._runner.run(Command("deleteMany", {"filter": dict(filter or {})}))
            deleted = _count(response, "deletedCount")
            if deleted < 0:
                return DeleteResult(deleted_count=-1)
            total += deleted
            if not response.status_value("moreData", False):
                return DeleteResult(deleted_count=total)

    def delete_many_async(self, filter: Filter | None = None) -> Future[DeleteResult]:
        return self._submit(self.delete_many, filter)

    # Bulk

    def bulk_write(
        self,
        commands: Sequence[Command],
        options: BulkOptions | None = None,
    ) -> BulkWriteResult:
        """
        Execute a list of commands as a bulk.

        Each chunk of ``options.chunk_size`` commands (one by default) runs
        its commands in order. With ``ordered=True`` the bulk stops at the
        first failing chunk.

        Raises:
            AggregatedApiError: If one or more chunks failed. Its
                ``partial_result`` is a BulkWriteResult of the others.
        """
        options = options or BulkOptions(chunk_size=1)
        if not commands:
            return BulkWriteResult()

        def run_chunk(chunk: list[Command], remaining: float | None) -> list[ApiResponse]:
            return [self._runner.run(_bounded(c, remaining)) for c in chunk]

        outcomes = self._bulk.execute(list(commands), options, run_chunk, summarize=_bulk_write_result)
        return _bulk_write_result(outcomes)

    def bulk_write_async(
        self,
        commands: Sequence[Command],
        options: BulkOptions | None = None,
    ) -> Future[BulkWriteResult]:
        return self._submit(self.bulk_write, commands, options)

    def __repr__(self) -> str:
        return f"Collection({self._full_name!r})"


def _bounded(command: Command, remaining: float | None) -> Command:
    """Cap the command deadline by what is left of the bulk budget."""
    if remaining is None:
        return command
    if command.timeout is None:
        return command.with_timeout(remaining)
    return command.with_timeout(min(command.timeout, remaining))


def _count(response: ApiResponse, key: str) -> int:
    return int(response.status_value(key) or 0)


def _inserted_ids(outcomes: list[ChunkOutcome[Any, list[Any]]]) -> InsertManyResult:
    ids: list[Any] = []
    for outcome in outcomes:
        ids.extend(outcome.result or [])
    return InsertManyResult(inserted_ids=ids)


def _bulk_write_result(outcomes: list[ChunkOutcome[Command, list[ApiResponse]]]) -> BulkWriteResult:
    return BulkWriteResult(per_chunk_responses=[outcome.result or [] for outcome in outcomes])


def _update_result(response: ApiResponse) -> UpdateResult:
    return UpdateResult(
        matched_count=_count(response, "matchedCount"),
        modified_count=_count(response, "modifiedCount"),
        upserted_id=response.status_value("upsertedId"),
    )


def _extract(value: Any, path: list[str]) -> list[Any]:
    if isinstance(value, list):
        return [v for item in value for v in _extract(item, path)]
    if not path:
        return [value]
    if not isinstance(value, dict) or path[0] not in value:
        return []
    return _extract(value[path[0]], path[1:])


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return value
