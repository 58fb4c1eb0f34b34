import logging
from types import SimpleNamespace

import pytest

from app.config.permissions_config import PAGES, PERMISSION_MATRIX, ROLES
from app.scripts import seed_permissions as seed


class StubQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []

    def select(self, columns):
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])
        matched = [r for r in rows if all(r.get(c) == v for c, v in self.filters)]
        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            for row in new_rows:
                rows.append({"id": f"{self.table}-{len(rows) + 1}", **row})
            self.db.inserted[self.table] += len(new_rows)
            return SimpleNamespace(data=new_rows)
        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=matched)
        return SimpleNamespace(data=[dict(r) for r in matched])


class StubSupabase:
    def __init__(self):
        self.tables = {}
        self.inserted = {"permissions": 0, "role_permissions": 0}

    def table(self, name):
        return StubQuery(self, name)

    def row(self, table, **match):
        return next(r for r in self.tables[table] if all(r.get(k) == v for k, v in match.items()))


@pytest.fixture
def db() -> StubSupabase:
    supabase = StubSupabase()
    seed.seed_permissions(supabase)
    seed.seed_role_defaults(supabase)
    return supabase


def test_first_run_creates_catalog_and_matrix(db):
    assert len(db.tables["permissions"]) == len(PAGES)
    assert len(db.tables["role_permissions"]) == len(ROLES) * len(PAGES)


def test_catalog_is_upserted_by_key(db):
    users = db.row("permissions", permission_key="page.users")
    users["name"] = "Renamed in the dashboard"

    seed.seed_permissions(db)

    assert len(db.tables["permissions"]) == len(PAGES)
    assert db.inserted["permissions"] == len(PAGES)
    assert db.row("permissions", permission_key="page.users")["name"] == PAGES["users"]["name"]


def test_rerun_keeps_admin_edited_role_defaults(db):
    users_id = db.row("permissions", permission_key="page.users")["id"]
    edited = db.row("role_permissions", role="viewer", permission_id=users_id)
    assert edited["granted"] is False
    edited["granted"] = True

    created = seed.seed_role_defaults(db)

    assert created == 0
    assert db.row("role_permissions", role="viewer", permission_id=users_id)["granted"] is True


def test_rerun_inserts_only_missing_pairs(db):
    pnl_id = db.row("permissions", permission_key="page.pnl")["id"]
    db.tables["role_permissions"] = [
        r for r in db.tables["role_permissions"]
        if not (r["role"] == "manager" and r["permission_id"] == pnl_id)
    ]
    before = db.inserted["role_permissions"]

    created = seed.seed_role_defaults(db)

    assert created == 1
    assert db.inserted["role_permissions"] == before + 1
    assert db.row("role_permissions", role="manager", permission_id=pnl_id)["granted"] is False


def test_malformed_key_is_not_seeded(monkeypatch, caplog):
    matrix = {
        "permissions": PERMISSION_MATRIX["permissions"] + [{
            "permission_key": "Reports Page", "name": "Reports", "description": "",
            "category": "page_access", "is_active": True,
        }],
        "role_defaults": [],
    }
    monkeypatch.setattr(seed, "PERMISSION_MATRIX", matrix)
    supabase = StubSupabase()

    with caplog.at_level(logging.ERROR):
        seed.seed_permissions(supabase)

    keys = {r["permission_key"] for r in supabase.tables["permissions"]}
    assert "Reports Page" not in keys
    assert len(keys) == len(PAGES)
    assert "Reports Page" in caplog.text
