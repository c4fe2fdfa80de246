"""
Cursor - single-use, lazily paginated sequence of query results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Iterator, TypeVar

from .command import Command
from .types import IllegalStateError

if TYPE_CHECKING:
    from .runner import CommandRunner
    from .types import Filter, Projection, Sort

T = TypeVar("T", bound=dict[str, Any])

__all__ = ["Cursor", "Page"]


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    One page of results.

    Attributes:
        documents: Documents of the page, in server order.
        next_page_state: Token of the next page, None on the last page.
    """

    documents: list[T] = field(default_factory=list)
    next_page_state: str | None = None

    @property
    def has_next(self) -> bool:
        return self.next_page_state is not None

    def one(self) -> T:
        """
        Return the only document of the page.

        Raises:
            IllegalStateError: If the page holds zero or several documents.
        """
        if len(self.documents) != 1:
            raise IllegalStateError(
                f"Expected exactly one document, page holds {len(self.documents)}"
            )
        return self.documents[0]

    def __len__(self) -> int:
        return len(self.documents)


def _projection(projection: Projection) -> dict[str, Any] | None:
    if not projection:
        return None
    if isinstance(projection, (list, tuple)):
        return {field: 1 for field in projection}
    return dict(projection)


class Cursor(Generic[T]):
    """
    Forward-only iterator over the results of a find.

    Pages are fetched as the cursor is consumed. The cursor can be read
    element by element (``next`` / ``for``) or drained at once with
    ``to_list``, but not both, and ``to_list`` works only once. Query
    modifiers (sort, limit, skip, project) must be set before consumption.

    Example:
        for doc in collection.find({"status": "active"}).sort({"name": 1}):
            print(doc)

        docs = collection.find({}).limit(10).to_list()
    """

    __slots__ = (
        "_runner",
        "_filter",
        "_projection",
        "_sort",
        "_limit",
        "_skip",
        "_buffer",
        "_page_state",
        "_started",
        "_exhausted",
        "_advanced",
        "_drained",
        "_retrieved",
    )

    def __init__(
        self,
        runner: CommandRunner,
        filter: Filter | None = None,
        projection: Projection = None,
    ) -> None:
        """
        Initialize a cursor.

        Args:
            runner: Runner of the collection being queried.
            filter: Query filter.
            projection: Fields to include/exclude.
        """
        self._runner = runner
        self._filter: dict[str, Any] = dict(filter or {})
        self._projection = _projection(projection)
        self._sort: dict[str, int] | None = None
        self._limit: int = 0
        self._skip: int = 0
        self._buffer: list[T] = []
        self._page_state: str | None = None
        self._started = False
        self._exhausted = False
        self._advanced = False
        self._drained = False
        self._retrieved = 0

    def _check_not_started(self) -> None:
        if self._started:
            raise IllegalStateError("Cursor options cannot change once iteration started")

    def sort(self, sort: Sort) -> Cursor[T]:
        """
        Sort the results.

        Args:
            sort: Mapping of field name to direction (1 or -1).

        Returns:
            Self for chaining.
        """
        self._check_not_started()
        self._sort = dict(sort) if sort else None
        return self

    def limit(self, limit: int) -> Cursor[T]:
        """Limit the number of results (0 means no limit)."""
        self._check_not_started()
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self._limit = limit
        return self

    def skip(self, skip: int) -> Cursor[T]:
        """Skip the first N results."""
        self._check_not_started()
        if skip < 0:
            raise ValueError("skip must be >= 0")
        self._skip = skip
        return self

    def project(self, projection: Projection) -> Cursor[T]:
        """Set field projection."""
        self._check_not_started()
        self._projection = _projection(projection)
        return self

    def command(self, page_state: str | None = None) -> Command:
        """The find command fetching the page identified by ``page_state``."""
        payload: dict[str, Any] = {"filter": self._filter}
        if self._projection:
            payload["projection"] = self._projection
        if self._sort:
            payload["sort"] = self._sort

        options: dict[str, Any] = {}
        if self._limit > 0:
            options["limit"] = self._limit
        if self._skip > 0:
            options["skip"] = self._skip
        if page_state:
            options["pageState"] = page_state
        if options:
            payload["options"] = options
        return Command("find", payload)

    def fetch_page(self, page_state: str | None = None) -> Page[T]:
        """Fetch one page without touching the cursor position."""
        response = self._runner.run(self.command(page_state))
        data = response.data
        if data is None:
            return Page()
        return Page(documents=list(data.documents or []), next_page_state=data.next_page_state)

    def _fill_buffer(self) -> None:
        while not self._buffer and not self._exhausted:
            page = self.fetch_page(self._page_state)
            self._started = True
            self._buffer = page.documents
            self._page_state = page.next_page_state
            if page.next_page_state is None:
                self._exhausted = True

    def _next_document(self) -> T:
        if self._limit and self._retrieved >= self._limit:
            self._exhausted = True
            self._buffer = []
            raise StopIteration
        self._fill_buffer()
        if not self._buffer:
            raise StopIteration
        self._retrieved += 1
        return self._buffer.pop(0)

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        """
        Get the next document.

        Raises:
            StopIteration: When all documents have been iterated.
            IllegalStateError: If the cursor was drained with to_list().
        """
        if self._drained:
            raise IllegalStateError("Cursor was already drained with to_list()")
        self._advanced = True
        return self._next_document()

    def next(self) -> T:
        return self.__next__()

    def to_list(self) -> list[T]:
        """
        Drain the cursor into a list.

        Raises:
            IllegalStateError: If the cursor was already drained or was
                advanced element by element.
        """
        if self._drained:
            raise IllegalStateError("Cursor was already drained with to_list()")
        if self._advanced:
            raise IllegalStateError("Cursor was already advanced; to_list() needs a fresh cursor")
        self._drained = True

        results: list[T] = []
        while True:
            try:
                results.append(self._next_document())
            except StopIteration:
                return results

    def clone(self) -> Cursor[T]:
        """
        A new, unconsumed cursor with the same query.
        """
        cursor = Cursor[T](self._runner, self._filter, None)
        cursor._projection = self._projection
        cursor._sort = self._sort
        cursor._limit = self._limit
        cursor._skip = self._skip
        return cursor

    @property
    def retrieved(self) -> int:
        """Number of documents returned so far."""
        return self._retrieved

    @property
    def alive(self) -> bool:
        """Check if the cursor can still yield documents."""
        return not (self._drained or (self._exhausted and not self._buffer))

    def __repr__(self) -> str:
        return f"Cursor({self._runner.endpoint!r}, filter={self._filter!r})"
