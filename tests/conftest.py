"""
Pytest configuration for StatTrack tests.

Provides an in-memory Supabase stand-in that understands the subset of the
PostgREST query builder the integrity core uses.
"""

import operator
import os
import re
import sys
import threading
from datetime import date
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
from postgrest.exceptions import APIError

# Ensure project root is importable
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

os.environ.setdefault("STATS_TIMEZONE", "America/New_York")

import db  # noqa: E402

TODAY = date(2026, 3, 15)


_COMPARISONS = {
    "eq": operator.eq,
    "neq": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


def _coerce(row_value: Any, text: str) -> Any:
    """Filter values arrive as text; compare them as the column's type."""
    if isinstance(row_value, bool):
        return text == "true"
    if isinstance(row_value, int):
        return int(text)
    if isinstance(row_value, float):
        return float(text)
    return text


def _split_top_level(text: str) -> List[str]:
    """Split on commas outside parentheses and double quotes."""
    parts, current = [], []
    depth, quoted, i = 0, False, 0
    while i < len(text):
        ch = text[i]
        if quoted:
            if ch == "\\" and i + 1 < len(text):
                current.append(text[i : i + 2])
                i += 2
                continue
            if ch == '"':
                quoted = False
        elif ch == '"':
            quoted = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1
    if current:
        parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def _predicate(column: str, op: str, text: str) -> Callable[[Dict[str, Any]], bool]:
    if op == "imatch":
        return lambda row: row.get(column) is not None and (
            re.search(text, str(row.get(column)), flags=re.IGNORECASE) is not None
        )
    if op == "is":
        return lambda row: row.get(column) is None

    compare = _COMPARISONS[op]

    def _match(row):
        value = row.get(column)
        if value is None:
            return False
        return compare(value, _coerce(value, text))

    return _match


def _compile_clause(clause: str) -> Callable[[Dict[str, Any]], bool]:
    for prefix, combine in (("and(", all), ("or(", any)):
        if clause.startswith(prefix) and clause.endswith(")"):
            inner = [_compile_clause(p) for p in _split_top_level(clause[len(prefix) : -1])]
            return lambda row, inner=inner, combine=combine: combine(p(row) for p in inner)
    column, op, value = clause.split(".", 2)
    return _predicate(column, op, _unquote(value))


def _parse_or(filters: str) -> List[Callable[[Dict[str, Any]], bool]]:
    """Compile 'col.op.value,and(col.op.value,...)' into predicates (any may match)."""
    return [_compile_clause(part) for part in _split_top_level(filters)]


class FakeQuery:
    """Chainable query builder operating on FakeSupabase tables."""

    def __init__(self, store: "FakeSupabase", name: str):
        self.store = store
        self.name = name
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.described: List[tuple] = []
        self._order: List[tuple] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple] = None

    # --- operations ---
    def select(self, columns="*", count=None):
        self.columns = columns
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=""):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filters ---
    def _add(self, desc, fn):
        self.described.append(desc)
        self.filters.append(fn)
        return self

    def eq(self, col, val):
        return self._add(("eq", col, val), lambda r: r.get(col) == val)

    def neq(self, col, val):
        return self._add(("neq", col, val), lambda r: r.get(col) != val)

    def gt(self, col, val):
        return self._add(("gt", col, val), lambda r: r.get(col) is not None and r.get(col) > val)

    def lt(self, col, val):
        return self._add(("lt", col, val), lambda r: r.get(col) is not None and r.get(col) < val)

    def in_(self, col, values):
        values = list(values)
        return self._add(("in", col, values), lambda r: r.get(col) in values)

    def or_(self, filters):
        predicates = _parse_or(filters)
        return self._add(("or", filters), lambda r: any(p(r) for p in predicates))

    # --- modifiers ---
    def order(self, col, desc=False):
        self._order.append((col, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def _matching(self, rows):
        return [r for r in rows if all(f(r) for f in self.filters)]

    def _project(self, row):
        if self.columns == "*":
            return dict(row)
        return {c: row.get(c) for c in self.columns.split(",")}

    def execute(self):
        return self.store._execute(self)


class FakeSupabase:
    """In-memory stub for the Supabase client.

    Failure injection: ``fail_when(predicate, exc)`` raises ``exc`` from
    execute() whenever ``predicate(query)`` is true (``times`` bounds how often).
    """

    UNIQUE_KEYS = {
        "creator_stats": ("creator_id", "recorded_at"),
        "maintenance_locks": ("name",),
    }

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.calls: List[FakeQuery] = []
        self._faults: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._next_id = 1000

    def table(self, name):
        self.tables.setdefault(name, [])
        return FakeQuery(self, name)

    def fail_when(self, predicate, exc, times=None):
        self._faults.append({"predicate": predicate, "exc": exc, "times": times})

    def rows(self, name):
        return self.tables.get(name, [])

    def _raise_fault(self, query):
        for fault in self._faults:
            if fault["times"] == 0 or not fault["predicate"](query):
                continue
            if fault["times"] is not None:
                fault["times"] -= 1
            exc = fault["exc"]
            raise exc() if isinstance(exc, type) else exc

    def _unique_violation(self, name, row, ignore=None):
        key = self.UNIQUE_KEYS.get(name)
        if not key:
            return None
        for existing in self.tables[name]:
            if existing is ignore:
                continue
            if all(existing.get(k) == row.get(k) for k in key):
                return existing
        return None

    def _insert(self, name, row):
        if self._unique_violation(name, row):
            raise APIError(
                {
                    "message": "duplicate key value violates unique constraint",
                    "code": "23505",
                    "hint": None,
                    "details": None,
                }
            )
        row = dict(row)
        if row.get("id") is None:
            self._next_id += 1
            row["id"] = self._next_id
        self.tables[name].append(row)
        return dict(row)

    def _execute(self, query: FakeQuery):
        with self._lock:
            self.calls.append(query)
            self._raise_fault(query)

            rows = self.tables[query.name]
            payload = query.payload
            if isinstance(payload, dict):
                payload = [payload]

            if query.op == "insert":
                return SimpleNamespace(data=[self._insert(query.name, r) for r in payload])

            if query.op == "upsert":
                written = []
                conflict = [c for c in (query.on_conflict or "").split(",") if c]
                for row in payload:
                    existing = next(
                        (
                            r
                            for r in rows
                            if conflict and all(r.get(c) == row.get(c) for c in conflict)
                        ),
                        None,
                    )
                    if existing is not None:
                        existing.update(row)
                        written.append(dict(existing))
                    else:
                        written.append(self._insert(query.name, row))
                return SimpleNamespace(data=written)

            matching = query._matching(rows)

            if query.op == "update":
                for row in matching:
                    row.update(query.payload)
                return SimpleNamespace(data=[dict(r) for r in matching])

            if query.op == "delete":
                ids = {id(r) for r in matching}
                self.tables[query.name] = [r for r in rows if id(r) not in ids]
                return SimpleNamespace(data=[dict(r) for r in matching])

            for col, desc in reversed(query._order):
                # NULLs sort last ascending, first descending (Postgres default)
                matching = sorted(
                    matching,
                    key=lambda r, col=col: (r.get(col) is None, r.get(col)),
                    reverse=desc,
                )
            if query._range:
                start, end = query._range
                matching = matching[start : end + 1]
            if query._limit is not None:
                matching = matching[: query._limit]
            return SimpleNamespace(data=[query._project(r) for r in matching], count=None)


# ==============================================================
# 🔧 Shared fixtures
# ==============================================================
@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No backoff sleeps between retry attempts."""
    monkeypatch.setattr(db, "STORE_RETRY_BACKOFF", 0)
    monkeypatch.setattr(db, "STORE_RETRY_MAX_WAIT", 0)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def fake_db():
    return FakeSupabase()


def stats_row(id, creator_id, recorded_at, subscribers, **extra):
    row = {
        "id": id,
        "creator_id": creator_id,
        "recorded_at": recorded_at if isinstance(recorded_at, str) else recorded_at.isoformat(),
        "subscribers": subscribers,
        "followers": subscribers,
        "total_views": extra.pop("total_views", None),
        "total_posts": extra.pop("total_posts", None),
    }
    row.update(extra)
    return row


def creator_row(id, platform, platform_id, username, display_name, **extra):
    row = {
        "id": id,
        "platform": platform,
        "platform_id": platform_id,
        "username": username,
        "display_name": display_name,
        "created_at": extra.pop("created_at", "2025-01-01T00:00:00+00:00"),
    }
    row.update(extra)
    return row
