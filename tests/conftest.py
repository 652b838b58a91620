import copy
import re
import uuid
from datetime import datetime

import pytest

import orders
from supabase_client import SupabaseError, UNIQUE_VIOLATION


def _comparable(value):
    if isinstance(value, str) and "T" in value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


def _matches(row, column, op, value):
    actual = row.get(column)
    if op == "eq":
        return actual == value or (actual is not None and str(actual) == str(value))
    if op == "neq":
        return not _matches(row, column, "eq", value)
    if op == "in":
        return str(actual) in {str(v) for v in value}
    if op == "like":
        pattern = "^" + re.escape(str(value)).replace("%", ".*").replace(r"\*", ".*") + "$"
        return actual is not None and re.match(pattern, str(actual)) is not None
    if actual is None:
        return False
    left, right = _comparable(actual), _comparable(value)
    return {
        "gt": lambda: left > right,
        "gte": lambda: left >= right,
        "lt": lambda: left < right,
        "lte": lambda: left <= right,
    }[op]()


class FakeSupabase:
    """In-memory stand-in for SupabaseClient"""

    UNIQUE = {"orders": ("order_number",), "promo_codes": ("code",)}

    def __init__(self):
        self.tables = {}
        self.users = {}
        self.conflicts = 0
        self.inserts = []

    def seed(self, table, *rows):
        self.tables.setdefault(table, []).extend(copy.deepcopy(list(rows)))

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def _filter(self, table, filters):
        return [r for r in self.rows(table) if all(_matches(r, c, op, v) for c, op, v in filters or [])]

    async def select(self, table, filters=None, columns="*", order=None, limit=None):
        found = self._filter(table, filters)
        if order:
            column, _, direction = order.partition(".")
            found = sorted(found, key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        if limit:
            found = found[:limit]
        return copy.deepcopy(found)

    async def select_one(self, table, filters=None, columns="*"):
        found = await self.select(table, filters, limit=1)
        return found[0] if found else None

    async def insert(self, table, row):
        self.inserts.append(table)
        if table == "orders" and self.conflicts > 0:
            self.conflicts -= 1
            raise SupabaseError(409, UNIQUE_VIOLATION, "duplicate key value violates unique constraint")
        for column in self.UNIQUE.get(table, ()):
            if any(r.get(column) == row.get(column) for r in self.rows(table)):
                raise SupabaseError(409, UNIQUE_VIOLATION, f"duplicate {column}")
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.rows(table).append(stored)
        return copy.deepcopy(stored)

    async def update(self, table, filters, values):
        updated = []
        for row in self._filter(table, filters):
            row.update(copy.deepcopy(values))
            updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table, filters):
        doomed = self._filter(table, filters)
        self.tables[table] = [r for r in self.rows(table) if r not in doomed]

    async def get_user(self, access_token):
        return copy.deepcopy(self.users.get(access_token))


class FakeNotifier:
    def __init__(self):
        self.emails = []
        self.pushes = []

    async def send_order_email(self, order, kind="new"):
        self.emails.append((order.get("order_number"), kind, order.get("status")))
        return {"success": True}

    async def send_push(self, user_id, kind, order=None, points=None, language=None):
        self.pushes.append((user_id, kind, points))
        return {"success": True}


def make_product(product_id, price, store="china", **extra):
    product = {
        "id": product_id,
        "name": f"Product {product_id}",
        "name_en": f"Product {product_id}",
        "name_zh": f"Product {product_id}",
        "name_vi": f"Product {product_id}",
        "price": price,
        "category": "pills",
        "disease": "cold",
        "store": store,
        "in_stock": True,
        "is_sample": False,
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    product.update(extra)
    return product


@pytest.fixture
def db():
    fake = FakeSupabase()
    fake.users["user-token"] = {"id": "user-1", "email": "anna@example.com"}
    fake.users["admin-token"] = {"id": "admin-1", "email": "admin@example.com"}
    fake.seed(
        "profiles",
        {"id": "user-1", "email": "anna@example.com", "loyalty_points": 1000, "is_admin": False},
        {"id": "admin-1", "email": "admin@example.com", "loyalty_points": 0, "is_admin": True},
    )
    fake.seed(
        "products",
        make_product("tiger-balm", 2500),
        make_product("ginseng", 4000, weight=0.5),
        make_product("sample-tea", 300, is_sample=True, weight=0.05),
        make_product("sample-oil", 200, is_sample=True),
        make_product("thai-balm", 1500, store="thailand", weight=0.3),
        make_product("viet-oil", 900, store="vietnam"),
        make_product("old-stock", 700, in_stock=False),
    )
    return fake


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(orders, "ORDER_NUMBER_RETRY_DELAY", 0)
