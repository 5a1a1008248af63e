# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import asyncio
import copy
import re
from typing import Any, Dict, List

from bson import ObjectId
import pytest
from httpx import ASGITransport, AsyncClient

from crawler.models import ScrapeResult
from providers.models import NormalizedProduct, ProviderPage, Source


class FakeResult:
    """Stand-in for pymongo's UpdateResult / DeleteResult / InsertOneResult."""

    def __init__(self, matched_count=0, modified_count=0, upserted_id=None,
                 deleted_count=0, inserted_id=None):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_id = upserted_id
        self.deleted_count = deleted_count
        self.inserted_id = inserted_id


def _compare(op, docv, arg):
    if docv is None:
        return False
    if op == "$gt":
        return docv > arg
    if op == "$gte":
        return docv >= arg
    if op == "$lt":
        return docv < arg
    return docv <= arg


def matches(doc, q):
    """
    Evaluate a MongoDB-style filter against one document.

    Supports equality, ``$or`` and the field operators ``$in``, ``$ne``,
    ``$regex`` (with ``$options``), ``$gt``, ``$gte``, ``$lt`` and ``$lte``.
    """
    for k, v in (q or {}).items():
        if k == "$or":
            if not any(matches(doc, sub) for sub in v):
                return False
            continue
        docv = doc.get(k)
        if isinstance(v, dict) and any(op.startswith("$") for op in v):
            for op, arg in v.items():
                if op == "$in":
                    ok = docv in arg
                elif op == "$ne":
                    ok = docv != arg
                elif op == "$regex":
                    flags = re.IGNORECASE if "i" in v.get("$options", "") else 0
                    ok = isinstance(docv, str) and re.search(arg, docv, flags) is not None
                elif op == "$options":
                    ok = True
                elif op in ("$gt", "$gte", "$lt", "$lte"):
                    ok = _compare(op, docv, arg)
                else:
                    raise NotImplementedError(op)
                if not ok:
                    return False
        elif docv != v:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """
        Sort by every (field, direction) pair, first pair most significant.

        Missing or None values sort before any real value.
        """
        for field, direction in reversed(order):
            self._docs.sort(
                key=lambda d: (d.get(field) is not None, d.get(field)),
                reverse=(direction < 0),
            )
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length=None):
        start = self._skip
        end = None if self._limit is None else start + self._limit
        return [copy.deepcopy(d) for d in self._docs[start:end]]


class FakeCollection:
    """
    In-memory Motor collection.

    Implements the subset of the Motor API the repository layer uses:
    find / find_one / count_documents with ``matches()`` filters,
    insert_one, update_one (``$set``, ``$inc``, ``$setOnInsert``, upsert),
    update_many, delete_one, delete_many and create_index.
    """

    def __init__(self, docs=None):
        self.docs = [copy.deepcopy(d) for d in (docs or [])]
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = str(ObjectId())
        self.indexes = []

    async def create_index(self, keys, **kwargs):
        self.indexes.append(keys)
        return str(keys)

    async def find_one(self, q=None):
        for d in self.docs:
            if matches(d, q):
                return copy.deepcopy(d)
        return None

    def find(self, q=None):
        return FakeCursor([d for d in self.docs if matches(d, q)])

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if matches(d, q))

    async def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        if "_id" not in doc:
            doc["_id"] = str(ObjectId())
        self.docs.append(doc)
        return FakeResult(inserted_id=doc["_id"])

    @staticmethod
    def _apply(doc, u, inserting=False):
        for k, v in u.get("$set", {}).items():
            doc[k] = copy.deepcopy(v)
        for k, v in u.get("$inc", {}).items():
            doc[k] = doc.get(k, 0) + v
        if inserting:
            for k, v in u.get("$setOnInsert", {}).items():
                doc[k] = copy.deepcopy(v)

    async def update_one(self, q, u, upsert=False):
        for d in self.docs:
            if matches(d, q):
                self._apply(d, u)
                return FakeResult(matched_count=1, modified_count=1)
        if not upsert:
            return FakeResult()
        doc = {k: v for k, v in q.items() if not k.startswith("$") and not isinstance(v, dict)}
        self._apply(doc, u, inserting=True)
        doc.setdefault("_id", str(ObjectId()))
        self.docs.append(doc)
        return FakeResult(upserted_id=doc["_id"])

    async def update_many(self, q, u):
        hit = [d for d in self.docs if matches(d, q)]
        for d in hit:
            self._apply(d, u)
        return FakeResult(matched_count=len(hit), modified_count=len(hit))

    async def delete_one(self, q):
        for i, d in enumerate(self.docs):
            if matches(d, q):
                del self.docs[i]
                return FakeResult(deleted_count=1)
        return FakeResult()

    async def delete_many(self, q):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not matches(d, q)]
        return FakeResult(deleted_count=before - len(self.docs))


class FakeDB:
    def __init__(self, **collections):
        self.food_products = FakeCollection(collections.get("food_products"))
        self.search_cache = FakeCollection(collections.get("search_cache"))
        self.scrape_jobs = FakeCollection(collections.get("scrape_jobs"))
        self.scrape_config = FakeCollection(collections.get("scrape_config"))
        self.search_demand = FakeCollection(collections.get("search_demand"))
        self.translation_cache = FakeCollection(collections.get("translation_cache"))


class FakeProvider:
    """
    Provider adapter double with call-count instrumentation.

    ``search`` returns ``items`` cut to the requested page size and ``total``
    as the self-reported hit count, after an optional ``delay``. When
    ``error`` is set it is raised instead.
    """

    def __init__(self, source, items=None, total=None, error=None, delay=0):
        self.source = Source(source).value
        self.items = list(items or [])
        self.total = len(self.items) if total is None else total
        self.error = error
        self.delay = delay
        self.calls = []
        self.barcodes = {}
        self.barcode_calls = 0
        self.barcode_errors = []
        self.foods = {}
        self.food_errors = []
        self.closed = False

    async def search(self, query, page=1, page_size=10):
        self.calls.append((query, page, page_size))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderPage(items=self.items[:page_size], total=self.total)

    async def get_by_barcode(self, barcode):
        self.barcode_calls += 1
        if self.barcode_errors:
            raise self.barcode_errors.pop(0)
        return self.barcodes[barcode]

    async def get_food(self, fdc_id):
        if self.food_errors:
            raise self.food_errors.pop(0)
        return self.foods[fdc_id]

    async def close(self):
        self.closed = True


class FakeScraper:
    """Scraper double; behaviour per source is configured on the factory."""

    def __init__(self, factory, source, max_products_per_run=None):
        self.factory = factory
        self.source = Source(source)
        self.max_products_per_run = max_products_per_run
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        self.closed = True

    async def run(self, job_type):
        self.factory.runs.append((self.source, job_type))
        if self.factory.run_error is not None:
            raise self.factory.run_error
        return ScrapeResult(products_processed=3, products_upserted=3)

    async def scrape_by_query(self, query):
        self.factory.queries.append((self.source, query))
        outcome = self.factory.query_results.get((self.source, query), 0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeScraperFactory:
    def __init__(self):
        self.runs = []
        self.queries = []
        self.query_results = {}
        self.run_error = None
        self.created = []

    def __call__(self, source, max_products_per_run=None):
        scraper = FakeScraper(self, source, max_products_per_run)
        self.created.append(scraper)
        return scraper


def make_product(source, external_id, name=None, brand=None, calories=100.0, **extra):
    return NormalizedProduct(
        source=source,
        external_id=str(external_id),
        name=name or f"{source} item {external_id}",
        brand=brand,
        calories_per_100g=calories,
        **extra,
    )


@pytest.fixture
def product():
    """Factory fixture: ``product("usda", 1, name="Egg")`` -> NormalizedProduct."""
    return make_product


@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    """
    Replace the Motor database with an in-memory FakeDB for every test.

    Every module reaches MongoDB through ``crawler.db.get_db``, so patching
    that single function isolates the whole suite from a real server.
    """
    fdb = FakeDB()
    monkeypatch.setattr("crawler.db.get_db", lambda: fdb)
    return fdb


@pytest.fixture
def usda_items(product):
    return [product("usda", i, name=f"Egg, whole, raw {i}") for i in range(1, 6)]


@pytest.fixture
def off_items(product):
    return [
        product("off", "3017620422003", name="Nutella", brand="Ferrero"),
        product("off", "0000000000001", name="Eggs free range"),
        product("off", "0000000000002", name="Egg salad", brand="Deli Co"),
        product("off", "0000000000003", name="Boiled egg"),
    ]


@pytest.fixture
async def client(fake_db):
    """
    Async test client for the FastAPI app.

    Search, scheduler and scraper dependencies are replaced per test through
    ``app.dependency_overrides``; the overrides and the rate limiter state are
    cleared after every test.
    """
    from api.main import app
    from api.rate_limit import limiter

    limiter.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
