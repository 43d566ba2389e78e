"""
Fixtures for the REST layer.

The Supabase client is replaced by an in-memory table store that supports
the query chain the onboarding routes use:
table().select().eq().in_().order().execute(), delete(), insert() and
upsert(on_conflict=).
"""

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from klio.web.app import app
from klio.web.auth import AuthenticatedUser, get_current_user
from onboarding.api import get_catalog_db, get_user_db


@dataclass
class FakeResponse:
    data: list[dict]


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._action = "select"
        self._columns: list[str] | None = None
        self._filters: list = []
        self._order: str | None = None
        self._payload = None
        self._on_conflict: str | None = None

    def select(self, columns: str = "*") -> "FakeQuery":
        self._action = "select"
        if columns.strip() != "*":
            self._columns = [c.strip() for c in columns.split(",")]
        return self

    def eq(self, column: str, value) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values) -> "FakeQuery":
        allowed = set(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column: str) -> "FakeQuery":
        self._order = column
        return self

    def delete(self) -> "FakeQuery":
        self._action = "delete"
        return self

    def insert(self, rows) -> "FakeQuery":
        self._action = "insert"
        self._payload = rows if isinstance(rows, list) else [rows]
        return self

    def upsert(self, row: dict, on_conflict: str = "id") -> "FakeQuery":
        self._action = "upsert"
        self._payload = row
        self._on_conflict = on_conflict
        return self

    def execute(self) -> FakeResponse:
        if self._table in self._db.fail_tables:
            raise RuntimeError(f"{self._table} unavailable")
        if self._action != "select" and self._table in self._db.fail_writes:
            raise RuntimeError(f"{self._table} is read-only")

        rows = self._db.tables.setdefault(self._table, [])
        self._db.calls.append((self._action, self._table))

        if self._action == "insert":
            rows.extend(dict(row) for row in self._payload)
            return FakeResponse(list(self._payload))

        if self._action == "upsert":
            key = self._on_conflict
            for row in rows:
                if row.get(key) == self._payload.get(key):
                    row.update(self._payload)
                    return FakeResponse([dict(row)])
            rows.append(dict(self._payload))
            return FakeResponse([dict(self._payload)])

        matched = [row for row in rows if all(f(row) for f in self._filters)]

        if self._action == "delete":
            self._db.tables[self._table] = [row for row in rows if row not in matched]
            return FakeResponse(matched)

        if self._order:
            matched = sorted(matched, key=lambda row: row.get(self._order) or "")
        if self._columns:
            matched = [{c: row.get(c) for c in self._columns} for row in matched]
        return FakeResponse([dict(row) for row in matched])


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_tables: set[str] = set()
        self.fail_writes: set[str] = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] != "select"]


USER = AuthenticatedUser(id="user-1", email="test@example.com", access_token="token-abc")


@pytest.fixture
def db():
    fake = FakeSupabase()
    fake.tables.update({
        "interests": [
            {"id": "food-drink", "name": "Food & Drink"},
            {"id": "arts-culture", "name": "Arts & Culture"},
            {"id": "outdoors-adventure", "name": "Outdoors & Adventure"},
        ],
        "subcategories": [
            {"id": "sushi", "label": "sushi", "interest_id": "food-drink"},
            {"id": "vegan", "label": "vegan", "interest_id": "food-drink"},
            {"id": "cafes", "label": "cafés", "interest_id": "food-drink"},
            {"id": "galleries", "label": "galleries", "interest_id": "arts-culture"},
        ],
        "deal_breakers": [
            {"id": "trust", "label": "Trust", "icon": "shield", "category_id": "core"},
            {"id": "pricing", "label": "Pricing", "icon": "tag", "category_id": "core"},
            {"id": "punctuality", "label": "Punctuality", "icon": "clock", "category_id": "core"},
        ],
        "user_interests": [],
        "user_subcategories": [],
        "user_deal_breakers": [],
        "profiles": [],
    })
    return fake


@pytest.fixture
def client(db):
    """TestClient with auth and both Supabase clients overridden."""
    app.dependency_overrides[get_current_user] = lambda: USER
    app.dependency_overrides[get_user_db] = lambda: db
    app.dependency_overrides[get_catalog_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(db):
    """TestClient with real auth; only the database is faked."""
    app.dependency_overrides[get_user_db] = lambda: db
    app.dependency_overrides[get_catalog_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
