"""
Pytest configuration and shared test helpers for backend tests.
"""
import copy
import os
from datetime import datetime, timezone
from enum import Enum
from types import SimpleNamespace
from unittest.mock import patch

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import pytest
from pymongo.errors import DuplicateKeyError

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app

from storebuilder.models.plans import Plan, DEFAULT_PLANS
from storebuilder.services.limit_enforcement import as_utc
from storebuilder.services.plan_catalog import plan_catalog
from storebuilder.services.session_manager import session_manager


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


# =============================================================================
# In-memory stand-in for the Motor collections used by the services
# =============================================================================

def _to_bson_like(value):
    """Enums are stored by value, as the BSON encoder does for str enums."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_bson_like(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_bson_like(v) for v in value]
    return value


def _compare_key(value):
    if isinstance(value, datetime):
        return as_utc(value)
    return value


def _matches(doc, query):
    for key, expected in (query or {}).items():
        actual = doc.get(key)
        if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                operand = _to_bson_like(operand)
                if op == "$in" and actual not in operand:
                    return False
                if op == "$ne" and actual == operand:
                    return False
                if op in ("$lt", "$gt"):
                    if actual is None:
                        return False
                    a, b = _compare_key(actual), _compare_key(operand)
                    if (op == "$lt" and not a < b) or (op == "$gt" and not a > b):
                        return False
        elif actual != _to_bson_like(expected):
            return False
    return True


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    doc.pop("_id", None)
    included = [k for k, v in (projection or {}).items() if v and k != "_id"]
    if included:
        return {k: doc[k] for k in included if k in doc}
    return doc


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        present = [d for d in self._docs if d.get(key) is not None]
        missing = [d for d in self._docs if d.get(key) is None]
        present.sort(key=lambda d: _compare_key(d[key]), reverse=direction == -1)
        self._docs = present + missing
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return list(self._docs if length is None else self._docs[:length])

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name, unique=()):
        self.name = name
        self.unique = unique
        self.docs = []
        self.writes = 0

    def seed(self, *docs):
        """Synchronous insert for test setup (not counted as a write)."""
        for doc in docs:
            self.docs.append(_to_bson_like(copy.deepcopy(doc)))

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query)])

    async def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))

    async def insert_one(self, doc):
        doc = _to_bson_like(copy.deepcopy(doc))
        for field in self.unique:
            if any(d.get(field) == doc.get(field) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}_1")
        self.docs.append(doc)
        self.writes += 1
        return SimpleNamespace(inserted_id=doc.get(f"{self.name[:-1]}_id"))

    async def _update(self, query, update, many):
        matched = modified = 0
        for doc in self.docs:
            if not _matches(doc, query):
                continue
            matched += 1
            changes = _to_bson_like(update.get("$set", {}))
            if any(doc.get(k) != v for k, v in changes.items()):
                doc.update(copy.deepcopy(changes))
                modified += 1
            if not many:
                break
        self.writes += modified
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    async def update_one(self, query, update, upsert=False):
        return await self._update(query, update, many=False)

    async def update_many(self, query, update):
        return await self._update(query, update, many=True)

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                self.writes += 1
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def create_index(self, *args, **kwargs):
        return None


class FakeDatabase:
    UNIQUE = {"accounts": ("email",), "stores": ("slug",), "stripe_events": ("event_id",)}

    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name, self.UNIQUE.get(name, ()))
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def writes_excluding(self, *names):
        return sum(c.writes for n, c in self._collections.items() if n not in names)


# =============================================================================
# Fixtures
# =============================================================================

def make_plans():
    return [Plan(**definition) for definition in DEFAULT_PLANS]


@pytest.fixture
def plans():
    return make_plans()


@pytest.fixture(autouse=True)
def reset_globals():
    """Process-wide caches must not leak between tests."""
    plan_catalog._plans = []
    plan_catalog.loaded_at = None
    session_manager._sessions.clear()
    session_manager.configure(scheduler=None, change_feed=None)
    yield
    plan_catalog._plans = []
    plan_catalog.loaded_at = None
    session_manager._sessions.clear()


@pytest.fixture
def fake_db():
    db = FakeDatabase()
    with patch("database.database.get_db", return_value=db):
        yield db


@pytest.fixture
def seeded_db(fake_db, plans):
    """Fake database holding the default plans, with the catalog loaded from them."""
    fake_db.plans.seed(*[p.model_dump() for p in plans])
    plan_catalog._plans = list(plans)
    plan_catalog.loaded_at = datetime.now(timezone.utc)
    return fake_db
