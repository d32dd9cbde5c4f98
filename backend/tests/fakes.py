"""
In-memory stand-in for the supabase client's PostgREST builder.

Covers the subset the fee engine uses:
    client.table(t).select(cols).eq(..).is_(..).lte(..).or_(..).order(..).limit(..).range(..).execute()
    client.table(t).insert(payload).execute()
    client.table(t).update(payload).eq(..).execute()

Values are compared as numbers when both sides parse as numbers,
otherwise as strings, so ISO dates compare the way Postgres does.

Hooks let a test inject failures or concurrent writes:
    fake.on("students", "select", raise_error("connection reset"))
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import copy
import threading
import uuid


@dataclass
class FakeResult:
    data: list
    count: int = None


def _as_number(value):
    if isinstance(value, bool) or value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _coerce(value):
    if isinstance(value, str) and value in ("true", "false"):
        return value == "true"
    return value


def _cmp(left, right) -> int:
    a, b = _as_number(left), _as_number(right)
    if a is None or b is None:
        a, b = str(left), str(right)
    return (a > b) - (a < b)


def _matches(row: dict, column: str, op: str, value) -> bool:
    current = row.get(column)
    if op == "is":
        if value in (None, "null"):
            return current is None
        return current is _coerce(value)
    if current is None:
        return op == "neq" and value is not None
    value = _coerce(value)
    if isinstance(value, bool) or isinstance(current, bool):
        equal = current == value
        return equal if op == "eq" else (not equal if op == "neq" else False)
    if op == "in":
        return any(_cmp(current, v) == 0 for v in value)
    result = _cmp(current, value)
    return {
        "eq":  result == 0,
        "neq": result != 0,
        "gt":  result > 0,
        "gte": result >= 0,
        "lt":  result < 0,
        "lte": result <= 0,
    }[op]


def _parse_or(expression: str):
    conditions = []
    for part in expression.split(","):
        column, op, value = part.strip().split(".", 2)
        conditions.append((column, op, value))
    return conditions


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self._client = client
        self._table = table
        self._action = "select"
        self._payload = None
        self._filters = []
        self.conditions = []
        self._orders = []
        self._limit = None
        self._range = None

    # ── actions ──
    def select(self, columns: str = "*", count=None):
        self._action = "select"
        return self

    def insert(self, payload):
        self._action = "insert"
        self._payload = payload
        return self

    def update(self, payload):
        self._action = "update"
        self._payload = payload
        return self

    # ── filters ──
    def _add(self, column, op, value):
        self.conditions.append((column, op, value))
        self._filters.append(lambda row: _matches(row, column, op, value))
        return self

    def eq(self, column, value):
        return self._add(column, "eq", value)

    def filter_value(self, column):
        """Value of the first eq() filter on `column`, for hooks."""
        for name, op, value in self.conditions:
            if name == column and op == "eq":
                return value
        return None

    def neq(self, column, value):
        return self._add(column, "neq", value)

    def gt(self, column, value):
        return self._add(column, "gt", value)

    def gte(self, column, value):
        return self._add(column, "gte", value)

    def lt(self, column, value):
        return self._add(column, "lt", value)

    def lte(self, column, value):
        return self._add(column, "lte", value)

    def is_(self, column, value):
        return self._add(column, "is", value)

    def in_(self, column, values):
        return self._add(column, "in", list(values))

    def or_(self, expression: str):
        conditions = _parse_or(expression)
        self._filters.append(
            lambda row: any(_matches(row, c, op, v) for c, op, v in conditions)
        )
        return self

    def order(self, column, desc: bool = False):
        self._orders.append((column, desc))
        return self

    def limit(self, size: int):
        self._limit = size
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    # ── execution ──
    def execute(self) -> FakeResult:
        self._client.calls.append((self._table, self._action))
        for hook in self._client.hooks.get((self._table, self._action), []):
            hook(self._client, self)
        with self._client.lock:
            if self._action == "insert":
                return FakeResult(self._do_insert())
            rows = [r for r in self._client.rows(self._table) if all(f(r) for f in self._filters)]
            if self._action == "update":
                for row in rows:
                    row.update(copy.deepcopy(self._payload))
                return FakeResult([dict(r) for r in rows])
            for column, desc in reversed(self._orders):
                present = [r for r in rows if r.get(column) is not None]
                missing = [r for r in rows if r.get(column) is None]
                present.sort(key=lambda r: _as_number(r[column]) if _as_number(r[column]) is not None else str(r[column]), reverse=desc)
                rows = missing + present if desc else present + missing
            if self._range is not None:
                start, end = self._range
                rows = rows[start:end + 1]
            if self._limit is not None:
                rows = rows[:self._limit]
            if self._client.max_rows is not None:
                rows = rows[:self._client.max_rows]
            return FakeResult([dict(r) for r in rows])

    def _do_insert(self) -> list:
        payloads = self._payload if isinstance(self._payload, list) else [self._payload]
        inserted = []
        for payload in payloads:
            row = copy.deepcopy(payload)
            row.setdefault("id", str(uuid.uuid4()))
            self._client.rows(self._table).append(row)
            inserted.append(dict(row))
        return inserted


class FakeSupabase:
    def __init__(self, tables: dict = None, max_rows: int = None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.hooks = {}
        self.calls = []
        self.lock = threading.Lock()
        # PostgREST db-max-rows: a select never returns more than this
        self.max_rows = max_rows

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list:
        return self.tables.setdefault(name, [])

    def seed(self, name: str, *rows: dict) -> list:
        stored = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            self.rows(name).append(row)
            stored.append(row)
        return stored

    def on(self, table: str, action: str, hook) -> None:
        self.hooks.setdefault((table, action), []).append(hook)


def raise_error(message: str, times: int = None):
    """Hook that makes the query fail, every time or the first `times` times."""
    remaining = {"n": times}

    def hook(client, query):
        if remaining["n"] is None:
            raise RuntimeError(message)
        if remaining["n"] > 0:
            remaining["n"] -= 1
            raise RuntimeError(message)
    return hook
