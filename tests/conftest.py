"""
Pytest fixtures for dataapi tests.

Provides an in-memory fake Data API served through httpx.MockTransport,
and client fixtures wired to it, for testing without network access.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Callable

import httpx
import pytest

PAGE_SIZE = 20
COUNT_LIMIT = 1000

# A failure rule returns an httpx.Response (or raises) to replace normal handling.
FailureRule = Callable[[str, dict[str, Any]], "httpx.Response | None"]


class FakeDataAPI:
    """In-memory Data API speaking the JSON command protocol."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._rules: list[FailureRule] = []
        self.requests: list[httpx.Request] = []
        self.commands: list[tuple[str, dict[str, Any]]] = []

    # Failure injection

    def add_rule(self, rule: FailureRule) -> None:
        self._rules.append(rule)

    def fail_times(
        self,
        command: str,
        times: int,
        status: int = 503,
        exc: Exception | None = None,
    ) -> None:
        """Fail the next ``times`` calls of ``command``."""
        remaining = {"n": times}

        def rule(name: str, payload: dict[str, Any]) -> httpx.Response | None:
            if name != command or remaining["n"] <= 0:
                return None
            remaining["n"] -= 1
            if exc is not None:
                raise exc
            return httpx.Response(status, text="unavailable")

        self.add_rule(rule)

    def reject_documents(self, predicate: Callable[[dict[str, Any]], bool], code: str = "REJECTED") -> None:
        """Answer insertMany with an error when any document matches."""

        def rule(name: str, payload: dict[str, Any]) -> httpx.Response | None:
            if name != "insertMany":
                return None
            if any(predicate(doc) for doc in payload.get("documents", [])):
                return httpx.Response(
                    200,
                    json={"errors": [{"message": "Document rejected", "errorCode": code}]},
                )
            return None

        self.add_rule(rule)

    # Storage helpers

    def seed(self, namespace: str, collection: str, documents: list[dict[str, Any]]) -> None:
        with self._lock:
            self._collection(namespace, collection).extend(dict(d) for d in documents)

    def documents(self, namespace: str, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._collection(namespace, collection))

    def command_names(self) -> list[str]:
        return [name for name, _ in self.commands]

    def _collection(self, namespace: str, collection: str) -> list[dict[str, Any]]:
        return self._data.setdefault((namespace, collection), [])

    # HTTP entry point

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        (name, payload), = body.items()
        with self._lock:
            self.requests.append(request)
            self.commands.append((name, payload))
            rules = list(self._rules)

        for rule in rules:
            response = rule(name, payload)
            if response is not None:
                return response

        parts = request.url.path.strip("/").split("/")
        # /api/json/v1/<namespace>/<collection>
        namespace, collection = parts[3], parts[4] if len(parts) > 4 else ""
        handler = getattr(self, f"_cmd_{name}", None)
        if handler is None:
            return httpx.Response(200, json={"errors": [{"message": f"Unknown command {name}", "errorCode": "NO_COMMAND"}]})
        with self._lock:
            return httpx.Response(200, json=handler(self._collection(namespace, collection), payload))

    # Commands

    def _cmd_insertOne(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        doc = payload["document"]
        if any(d.get("_id") == doc.get("_id") for d in data):
            return {"errors": [{"message": "Document already exists", "errorCode": "DOCUMENT_ALREADY_EXISTS"}]}
        data.append(dict(doc))
        return {"status": {"insertedIds": [doc["_id"]]}}

    def _cmd_insertMany(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        inserted = []
        for doc in payload["documents"]:
            data.append(dict(doc))
            inserted.append(doc["_id"])
        return {"status": {"insertedIds": inserted}}

    def _cmd_findOne(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        for doc in self._sorted(data, payload.get("sort")):
            if _matches(doc, payload.get("filter", {})):
                return {"data": {"document": _project(doc, payload.get("projection"))}}
        return {"data": {"document": None}}

    def _cmd_find(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        options = payload.get("options", {})
        matches = [d for d in self._sorted(data, payload.get("sort")) if _matches(d, payload.get("filter", {}))]
        matches = matches[options.get("skip", 0):]
        if options.get("limit"):
            matches = matches[: options["limit"]]
        start = int(options.get("pageState", 0))
        page = matches[start : start + PAGE_SIZE]
        next_state = str(start + PAGE_SIZE) if start + PAGE_SIZE < len(matches) else None
        return {
            "data": {
                "documents": [_project(d, payload.get("projection")) for d in page],
                "nextPageState": next_state,
            }
        }

    def _cmd_updateOne(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        for doc in data:
            if _matches(doc, payload["filter"]):
                modified = _apply_update(doc, payload["update"])
                return {"status": {"matchedCount": 1, "modifiedCount": int(modified)}}
        if payload.get("options", {}).get("upsert"):
            doc = {"_id": payload["filter"].get("_id", f"upsert-{len(data)}"), **payload["filter"]}
            _apply_update(doc, payload["update"])
            data.append(doc)
            return {"status": {"matchedCount": 0, "modifiedCount": 0, "upsertedId": doc["_id"]}}
        return {"status": {"matchedCount": 0, "modifiedCount": 0}}

    def _cmd_updateMany(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        options = payload.get("options", {})
        matches = [d for d in data if _matches(d, payload["filter"])]
        start = int(options.get("pageState", 0))
        page = matches[start : start + PAGE_SIZE]
        modified = sum(int(_apply_update(doc, payload["update"])) for doc in page)
        status: dict[str, Any] = {"matchedCount": len(page), "modifiedCount": modified}
        if start + PAGE_SIZE < len(matches):
            status["nextPageState"] = str(start + PAGE_SIZE)
        return {"status": status}

    def _cmd_findOneAndReplace(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        for i, doc in enumerate(data):
            if _matches(doc, payload["filter"]):
                data[i] = {"_id": doc["_id"], **payload["replacement"]}
                return {"data": {"document": doc}, "status": {"matchedCount": 1, "modifiedCount": 1}}
        return {"data": {"document": None}, "status": {"matchedCount": 0, "modifiedCount": 0}}

    def _cmd_deleteOne(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        for i, doc in enumerate(data):
            if _matches(doc, payload["filter"]):
                del data[i]
                return {"status": {"deletedCount": 1}}
        return {"status": {"deletedCount": 0}}

    def _cmd_deleteMany(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        if not payload.get("filter"):
            data.clear()
            return {"status": {"deletedCount": -1}}
        matches = [d for d in data if _matches(d, payload["filter"])][:PAGE_SIZE]
        for doc in matches:
            data.remove(doc)
        more = any(_matches(d, payload["filter"]) for d in data)
        return {"status": {"deletedCount": len(matches), "moreData": more}}

    def _cmd_countDocuments(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        count = sum(1 for d in data if _matches(d, payload.get("filter", {})))
        if count > COUNT_LIMIT:
            return {"status": {"count": COUNT_LIMIT, "moreData": True}}
        return {"status": {"count": count}}

    def _cmd_estimatedDocumentCount(self, data: list[dict[str, Any]], payload: dict[str, Any]) -> dict[str, Any]:
        return {"status": {"count": len(data)}}

    @staticmethod
    def _sorted(data: list[dict[str, Any]], sort: dict[str, int] | None) -> list[dict[str, Any]]:
        docs = list(data)
        for key, direction in reversed(list((sort or {}).items())):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return docs


def _matches(doc: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Check if document matches filter."""
    for key, value in filter.items():
        doc_value = doc.get(key)
        if isinstance(value, dict) and any(k.startswith("$") for k in value):
            for op, op_value in value.items():
                if op == "$gt" and not (doc_value is not None and doc_value > op_value):
                    return False
                if op == "$lt" and not (doc_value is not None and doc_value < op_value):
                    return False
                if op == "$in" and doc_value not in op_value:
                    return False
                if op == "$ne" and doc_value == op_value:
                    return False
        elif doc_value != value:
            return False
    return True


def _apply_update(doc: dict[str, Any], update: dict[str, Any]) -> bool:
    """Apply $set/$unset/$inc operators to document."""
    modified = False
    for op, fields in update.items():
        if op == "$set":
            for key, value in fields.items():
                if doc.get(key) != value:
                    doc[key] = value
                    modified = True
        elif op == "$unset":
            for key in fields:
                if key in doc:
                    del doc[key]
                    modified = True
        elif op == "$inc":
            for key, value in fields.items():
                doc[key] = doc.get(key, 0) + value
                modified = True
    return modified


def _project(doc: dict[str, Any] | None, projection: dict[str, int] | None) -> dict[str, Any] | None:
    """Apply an inclusion projection to document."""
    if doc is None or not projection:
        return doc
    result = {"_id": doc["_id"]}
    for key, include in projection.items():
        top = key.split(".")[0]
        if include and top in doc:
            result[top] = doc[top]
    return result


@pytest.fixture
def fake_api() -> FakeDataAPI:
    """Create an empty fake Data API."""
    return FakeDataAPI()


@pytest.fixture
def http_client(fake_api: FakeDataAPI):
    """httpx client routed to the fake Data API."""
    client = httpx.Client(transport=httpx.MockTransport(fake_api.handle))
    yield client
    client.close()


@pytest.fixture
def options():
    """Client options without retry delays."""
    from dataapi import DataAPIOptions, FixedBackoff, RetryPolicy

    return DataAPIOptions(retry=RetryPolicy(backoff=FixedBackoff(0)))


@pytest.fixture
def client(http_client, options):
    """Create a DataAPIClient wired to the fake Data API."""
    from dataapi import DataAPIClient

    client = DataAPIClient("test-token", "https://test.dataapi.local", options, http_client=http_client)
    yield client
    client.close()


@pytest.fixture
def database(client):
    """Create a database."""
    return client["testdb"]


@pytest.fixture
def collection(database):
    """Create a collection."""
    return database["testcollection"]


class RecordingObserver:
    """Observer collecting every record it receives."""

    def __init__(self) -> None:
        self.records: list[Any] = []
        self.event = threading.Event()

    def on_command(self, record: Any) -> None:
        self.records.append(record)
        self.event.set()


class FailingObserver:
    """Observer raising on every call."""

    def __init__(self) -> None:
        self.calls = 0

    def on_command(self, record: Any) -> None:
        self.calls += 1
        raise RuntimeError("observer exploded")


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def failing_observer() -> FailingObserver:
    return FailingObserver()
