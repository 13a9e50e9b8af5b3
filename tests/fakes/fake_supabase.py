"""In-memory stand-in for the Supabase client used by the db layer."""

import copy
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4


@dataclass
class FakeResponse:
    data: Any
    count: int | None = None


def _now_iso(offset: int) -> str:
    # Offset keeps created_at strictly increasing within a test
    return (datetime.now(timezone.utc) + timedelta(microseconds=offset)).isoformat()


class FakeQuery:
    """Chainable query builder mirroring the postgrest calls the app makes."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict], bool]] = []
        self.orders: list[tuple[str, bool]] = []
        self.offset = 0
        self.max_rows: int | None = None

    # Actions
    def select(self, *columns: str, **kwargs: Any) -> "FakeQuery":
        self.action = "select"
        return self

    def insert(self, payload: dict | list[dict]) -> "FakeQuery":
        self.action = "insert"
        self.payload = payload
        return self

    def upsert(self, payload: dict | list[dict], **kwargs: Any) -> "FakeQuery":
        self.action = "upsert"
        self.payload = payload
        return self

    def update(self, payload: dict) -> "FakeQuery":
        self.action = "update"
        self.payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self.action = "delete"
        return self

    # Filters
    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: _as_str(row.get(column)) == _as_str(value))
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: _as_str(row.get(column)) != _as_str(value))
        return self

    def is_(self, column: str, value: str) -> "FakeQuery":
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is not None)
        return self

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        wanted = {_as_str(v) for v in values}
        self.filters.append(lambda row: _as_str(row.get(column)) in wanted)
        return self

    def lt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def gt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row[column] > value)
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def text_search(self, column: str, query: str, options: dict | None = None) -> "FakeQuery":
        terms = [t.lower() for t in query.split()]
        self.filters.append(
            lambda row: any(t in str(row.get(column) or "").lower() for t in terms)
        )
        return self

    def ilike(self, column: str, pattern: str) -> "FakeQuery":
        needle = pattern.strip("%").lower()
        self.filters.append(lambda row: needle in str(row.get(column) or "").lower())
        return self

    # Modifiers
    def order(self, column: str, desc: bool = False, **kwargs: Any) -> "FakeQuery":
        self.orders.append((column, desc))
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.max_rows = count
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.offset = start
        self.max_rows = end - start + 1
        return self

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self) -> FakeResponse:
        if self.table_name in self.db.failing_tables:
            raise RuntimeError(f"Simulated failure on {self.table_name}")

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.action in ("insert", "upsert"):
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = []
            for item in items:
                row = copy.deepcopy(item)
                existing = None
                if self.action == "upsert" and row.get("id"):
                    existing = next((r for r in rows if r.get("id") == row["id"]), None)
                if existing is not None:
                    existing.update(row)
                    created.append(copy.deepcopy(existing))
                    continue
                row.setdefault("id", str(uuid4()))
                stamp = _now_iso(next(self.db.clock))
                row.setdefault("created_at", stamp)
                row.setdefault("updated_at", stamp)
                rows.append(row)
                created.append(copy.deepcopy(row))
            return FakeResponse(data=created)

        matched = [r for r in rows if self._matches(r)]

        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(data=copy.deepcopy(matched))

        if self.action == "delete":
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return FakeResponse(data=copy.deepcopy(matched))

        for column, desc in reversed(self.orders):
            matched.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        matched = matched[self.offset:]
        if self.max_rows is not None:
            matched = matched[: self.max_rows]
        return FakeResponse(data=copy.deepcopy(matched), count=len(matched))


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, self.params))
        return FakeResponse(data=copy.deepcopy(self.db.rpc_results.get(self.name, [])))


class FakeBucket:
    def __init__(self, db: "FakeSupabase", bucket: str):
        self.db = db
        self.bucket = bucket

    def upload(self, path: str, file: bytes, file_options: dict | None = None) -> dict:
        self.db.objects[(self.bucket, path)] = file
        return {"path": path}

    def download(self, path: str) -> bytes:
        return self.db.objects.get((self.bucket, path), b"")

    def create_signed_url(self, path: str, expires_in: int) -> dict:
        return {"signedURL": f"https://test.supabase.co/storage/{self.bucket}/{path}?exp={expires_in}"}

    def remove(self, paths: list[str]) -> list[dict]:
        for path in paths:
            self.db.objects.pop((self.bucket, path), None)
        return [{"name": p} for p in paths]


@dataclass
class FakeStorage:
    db: "FakeSupabase"

    def from_(self, bucket: str) -> FakeBucket:
        return FakeBucket(self.db, bucket)


@dataclass
class FakeSupabase:
    """Tables are lists of row dicts keyed by table name."""

    tables: dict[str, list[dict]] = field(default_factory=dict)
    rpc_results: dict[str, list[dict]] = field(default_factory=dict)
    rpc_calls: list[tuple[str, dict]] = field(default_factory=list)
    objects: dict[tuple[str, str], bytes] = field(default_factory=dict)
    failing_tables: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.clock = itertools.count()
        self.storage = FakeStorage(self)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        return FakeRpc(self, name, params)

    def seed(self, table: str, *rows: dict) -> list[dict]:
        """Insert rows directly and return them with generated ids."""
        return self.table(table).insert(list(rows)).execute().data


def _as_str(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)
