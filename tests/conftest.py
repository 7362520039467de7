"""Shared fixtures for the BlitzPrices test suite."""

from __future__ import annotations

import itertools
from collections import defaultdict
from pathlib import Path
from typing import Any

import pytest

from blitzprices.models import Category, CategoryConfig, ScrapedItem, Source, Unit

FIXTURES = Path(__file__).resolve().parent / "fixtures"


# ---------------------------------------------------------------------------
# In-memory Supabase stand-in
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, data: Any) -> None:
        self.data = data


class FakeQuery:
    """Chainable query builder covering the calls the pipeline makes."""

    def __init__(self, store: "FakeSupabase", table: str) -> None:
        self.store = store
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = ""
        self.filters: list[tuple[str, Any]] = []
        self.row_limit: int | None = None

    def select(self, *columns: str) -> "FakeQuery":
        return self

    def upsert(self, rows, *, on_conflict: str = "", ignore_duplicates: bool = False) -> "FakeQuery":
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def insert(self, row) -> "FakeQuery":
        self.op = "insert"
        self.payload = row
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.row_limit = n
        return self

    def execute(self) -> FakeResponse:
        return self.store._execute(self)


class FakeRpc:
    def __init__(self, store: "FakeSupabase", name: str, params: dict[str, Any]) -> None:
        self.store = store
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.store.calls.append(("rpc", self.name, self.params))
        failure = self.store.fail_on.get(self.name)
        if failure is not None:
            raise failure
        return FakeResponse(list(self.store.rpc_results.get(self.name, [])))


class FakeSupabase:
    """Tables keyed by natural key, with Postgres-like upsert semantics.

    ``unique_keys`` mirrors the unique indexes in sql/schema.sql: upserts must
    target one of them, inserts may not repeat a non-NULL key.
    ``fail_on[name] = exc`` makes every call against that table / RPC raise.
    """

    unique_keys: dict[str, list[tuple[str, ...]]] = {
        "community_prices": [("dedupe_key",)],
        "products": [("source", "source_product_id")],
    }

    def __init__(self) -> None:
        self.tables: dict[str, dict[Any, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_on: dict[str, Exception] = {}
        self.rpc_results: dict[str, list[dict[str, Any]]] = {}
        self._ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any] | None = None) -> FakeRpc:
        return FakeRpc(self, name, params or {})

    def seed(self, table: str, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            self.tables[table][next(self._ids)] = dict(row)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables[table].values())

    def calls_to(self, kind: str, name: str | None = None) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == kind and (name is None or c[1] == name)]

    def _check_unique(self, table: str, row: dict[str, Any]) -> None:
        for cols in self.unique_keys.get(table, []):
            key = tuple(row.get(c) for c in cols)
            if None in key:
                continue
            if any(tuple(r.get(c) for c in cols) == key for r in self.tables[table].values()):
                raise RuntimeError(
                    f"duplicate key value violates unique constraint on {table} ({', '.join(cols)})"
                )

    def _execute(self, q: FakeQuery) -> FakeResponse:
        self.calls.append((q.op, q.table, q.payload))
        failure = self.fail_on.get(q.table)
        if failure is not None:
            raise failure

        if q.op == "upsert":
            cols = tuple(c.strip() for c in q.on_conflict.split(","))
            if q.table in self.unique_keys and cols not in self.unique_keys[q.table]:
                raise RuntimeError(
                    "there is no unique or exclusion constraint matching the ON CONFLICT specification"
                )
            keys = [tuple(r.get(c) for c in cols) for r in q.payload]
            non_null = [k for k in keys if None not in k]
            if len(set(non_null)) != len(non_null):
                raise RuntimeError("ON CONFLICT DO UPDATE command cannot affect row a second time")
            for key, row in zip(keys, q.payload):
                # NULL never conflicts
                if None in key:
                    key = f"id-{next(self._ids)}"
                self.tables[q.table][key] = dict(row)
            return FakeResponse([dict(r) for r in q.payload])

        if q.op == "insert":
            row = dict(q.payload)
            self._check_unique(q.table, row)
            row.setdefault("id", f"id-{next(self._ids)}")
            self.tables[q.table][row["id"]] = row
            return FakeResponse([row])

        rows = [
            r for r in self.tables[q.table].values()
            if all(r.get(col) == val for col, val in q.filters)
        ]
        if q.row_limit is not None:
            rows = rows[: q.row_limit]
        return FakeResponse(rows)


@pytest.fixture
def fake_db():
    return FakeSupabase()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def plumbing():
    return CategoryConfig("Plumbing", "/b/Plumbing/N-5yc1vZbqew", Category.MATERIALS)


@pytest.fixture
def make_item():
    """Factory that builds ``ScrapedItem`` objects with sensible defaults."""

    counter = itertools.count(1)

    def _make(
        *,
        name: str | None = None,
        price: float = 12.97,
        unit: Unit = Unit.EACH,
        category: Category = Category.MATERIALS,
        sku: str | None = None,
        **overrides,
    ) -> ScrapedItem:
        n = next(counter)
        fields = {
            "source": Source.HOMEDEPOT,
            "source_sku": sku or f"{300000000 + n}",
            "name": name or f"Test Fitting {n}",
            "category": category,
            "price": price,
            "unit": unit,
            "url": f"https://www.homedepot.com/p/test/{300000000 + n}",
        }
        fields.update(overrides)
        return ScrapedItem(**fields)

    return _make


@pytest.fixture
def make_catalog_record():
    """Factory for catalog dump records as they appear in the JSON export."""

    counter = itertools.count(1)

    def _make(**overrides) -> dict[str, Any]:
        n = next(counter)
        record = {
            "product_id": f"{200000000 + n}",
            "sku": f"1000{n}",
            "product_name": f"Catalog Product {n}",
            "url": f"https://www.homedepot.com/p/catalog-product/{200000000 + n}",
            "final_price": "$19.98",
            "initial_price": "$24.98",
            "in_stock": True,
            "category": {"name": "Pipe & Fittings"},
            "root_category": {"name": "Plumbing"},
            "rating": "4.6",
            "reviews_count": "1,204",
            "main_image": "https://images.thdstatic.com/productImages/example.jpg",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def listing_html():
    return (FIXTURES / "homedepot_listing.html").read_text(encoding="utf-8")


@pytest.fixture
def fallback_listing_html():
    return (FIXTURES / "homedepot_listing_fallback.html").read_text(encoding="utf-8")
