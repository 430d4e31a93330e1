from datetime import datetime, timezone


UNIQUE_KEYS = {
    "webhook_events_v2": ("provider", "event_id"),
}


def ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce(value):
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return value


def _compare(op: str, left, right) -> bool:
    if left is None or right is None:
        return False
    left, right = _coerce(left), _coerce(right)
    if op == "lt":
        return left < right
    if op == "gte":
        return left >= right
    raise ValueError(op)


def _literal(value: str):
    if value == "null":
        return None
    if value in ("true", "false"):
        return value == "true"
    return value


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.insert_payload = None
        self.update_payload = None
        self.filters = []
        self.or_groups = []
        self.order_by = None
        self.limit_count = None

    def select(self, _fields: str):
        self.operation = "select"
        return self

    def insert(self, payload: dict):
        self.operation = "insert"
        self.insert_payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.update_payload = payload
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def lt(self, key: str, value):
        self.filters.append(("lt", key, value))
        return self

    def gte(self, key: str, value):
        self.filters.append(("gte", key, value))
        return self

    def is_(self, key: str, value):
        self.filters.append(("is", key, value))
        return self

    def or_(self, expression: str):
        group = []
        for token in expression.split(","):
            key, op, value = token.split(".", 2)
            group.append((op, key, _literal(value)))
        self.or_groups.append(group)
        return self

    def order(self, key: str, desc: bool = False):
        self.order_by = (key, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    @staticmethod
    def _check(kind: str, key: str, value, row: dict) -> bool:
        if kind == "eq":
            return row.get(key) == value
        if kind == "is":
            return row.get(key) is None if value in (None, "null") else row.get(key) == value
        return _compare(kind, row.get(key), value)

    def _matches(self, row: dict) -> bool:
        if not all(self._check(kind, key, value, row) for kind, key, value in self.filters):
            return False
        return all(
            any(self._check(kind, key, value, row) for kind, key, value in group)
            for group in self.or_groups
        )

    def execute(self):
        if (self.table_name, self.operation) in self.db.fail_on:
            raise Exception(f"connection reset during {self.operation} on {self.table_name}")
        table = self.db.tables.setdefault(self.table_name, [])
        self.db.calls.append((self.table_name, self.operation))

        if self.operation == "insert":
            unique = UNIQUE_KEYS.get(self.table_name)
            if unique:
                for row in table:
                    if all(row.get(col) == self.insert_payload.get(col) for col in unique):
                        raise Exception("duplicate key value violates unique constraint (23505)")
            row = dict(self.insert_payload or {})
            row.setdefault("id", f"{self.table_name}-{len(table)+1}")
            row.setdefault("created_at", ts())
            table.append(row)
            return FakeResponse([dict(row)])

        if self.operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self.update_payload or {})
                    updated.append(dict(row))
            return FakeResponse(updated)

        rows = [dict(row) for row in table if self._matches(row)]
        if self.order_by:
            key, desc = self.order_by
            rows = sorted(rows, key=lambda row: row.get(key) or "", reverse=desc)
        if self.limit_count is not None:
            rows = rows[: self.limit_count]
        return FakeResponse(rows)


class FakeSupabase:
    """In-memory stand-in for the supabase query builder."""

    def __init__(self, tables: dict | None = None, fail_on: set | None = None):
        self.tables = tables if tables is not None else {}
        self.fail_on = fail_on or set()
        self.calls = []

    def table(self, table_name: str):
        return FakeQuery(table_name, self)

    def rows(self, table_name: str) -> list:
        return self.tables.get(table_name, [])
