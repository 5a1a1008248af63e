# crawler/db.py
from datetime import datetime, timezone
import os
import re

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from .models import ScrapeConfig, ScrapeJob, SearchDemand

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "food_federation")

_client = None
_db = None


def utcnow():
    return datetime.now(timezone.utc)


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI, tz_aware=True)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


async def ensure_indexes():
    """
    Create the secondary indexes every collection relies on.

    Collections:
        - food_products: name_lower, brand_lower, source, (popularity, updated_at)
        - search_cache: expires_at
        - scrape_jobs: (source, status, completed_at desc), started_at desc
        - search_demand: (scrape_attempted, hit_count desc)

    Note:
        Safe to call on every start, MongoDB ignores indexes that already exist.
    """
    db = get_db()
    await db.food_products.create_index("name_lower")
    await db.food_products.create_index("brand_lower")
    await db.food_products.create_index("source")
    await db.food_products.create_index([("popularity", -1), ("updated_at", 1)])
    await db.search_cache.create_index("expires_at")
    await db.scrape_jobs.create_index(
        [("source", 1), ("status", 1), ("completed_at", -1)]
    )
    await db.scrape_jobs.create_index([("started_at", -1)])
    await db.search_demand.create_index([("scrape_attempted", 1), ("hit_count", -1)])


# -- catalog ---------------------------------------------------------------


async def upsert_product(record):
    """
    Insert or update a catalog record keyed by its deterministic id.

    Every field of ``record`` is overwritten except ``popularity`` and
    ``last_searched_at``, which are only set when the row is created.
    """
    db = get_db()
    fields = {
        k: v
        for k, v in record.items()
        if k not in ("_id", "popularity", "last_searched_at", "created_at")
    }
    await db.food_products.update_one(
        {"_id": record["_id"]},
        {
            "$set": fields,
            "$setOnInsert": {
                "popularity": 0,
                "last_searched_at": None,
                "created_at": utcnow(),
            },
        },
        upsert=True,
    )


async def count_products(source=None):
    db = get_db()
    q = {"source": source} if source else {}
    return await db.food_products.count_documents(q)


async def search_catalog(query, page=1, page_size=20):
    """Case-insensitive name/brand match over the catalog, most popular first."""
    db = get_db()
    pattern = re.escape(query.strip().lower())
    q = {
        "$or": [
            {"name_lower": {"$regex": pattern}},
            {"brand_lower": {"$regex": pattern}},
        ]
    }
    total = await db.food_products.count_documents(q)
    docs = (
        await db.food_products.find(q)
        .sort([("popularity", -1)])
        .skip((page - 1) * page_size)
        .limit(page_size)
        .to_list(length=page_size)
    )
    return docs, total


async def bump_popularity(product_ids):
    if not product_ids:
        return
    db = get_db()
    await db.food_products.update_many(
        {"_id": {"$in": list(product_ids)}},
        {"$inc": {"popularity": 1}, "$set": {"last_searched_at": utcnow()}},
    )


async def find_stale_popular(min_popularity, updated_before, limit=100):
    db = get_db()
    return (
        await db.food_products.find(
            {
                "popularity": {"$gt": min_popularity},
                "updated_at": {"$lt": updated_before},
            }
        )
        .limit(limit)
        .to_list(length=limit)
    )


async def touch_products(product_ids):
    """Refresh ``updated_at`` on the given catalog rows."""
    if not product_ids:
        return 0
    db = get_db()
    res = await db.food_products.update_many(
        {"_id": {"$in": list(product_ids)}}, {"$set": {"updated_at": utcnow()}}
    )
    return res.modified_count


# -- job ledger --------------------------------------------------------------


async def insert_job(source, job_type, cursor=None):
    """Open a RUNNING scrape job and return its string ID."""
    db = get_db()
    doc = {
        "_id": str(ObjectId()),
        "source": source,
        "job_type": job_type,
        "status": "RUNNING",
        "started_at": utcnow(),
        "completed_at": None,
        "last_cursor": cursor,
        "products_scraped": 0,
        "products_updated": 0,
        "error_count": 0,
        "last_error": None,
    }
    await db.scrape_jobs.insert_one(doc)
    return doc["_id"]


async def update_job(job_id, set_fields=None, inc_fields=None):
    db = get_db()
    update = {}
    if set_fields:
        update["$set"] = set_fields
    if inc_fields:
        update["$inc"] = inc_fields
    if update:
        await db.scrape_jobs.update_one({"_id": job_id}, update)


async def last_completed_job(source):
    """Most recently completed job for ``source`` as a ScrapeJob, or None."""
    db = get_db()
    docs = (
        await db.scrape_jobs.find({"source": source, "status": "COMPLETED"})
        .sort([("completed_at", -1)])
        .limit(1)
        .to_list(length=1)
    )
    return ScrapeJob.model_validate(docs[0]) if docs else None


async def recent_jobs(limit=10):
    db = get_db()
    docs = (
        await db.scrape_jobs.find({})
        .sort([("started_at", -1)])
        .limit(limit)
        .to_list(length=limit)
    )
    return [ScrapeJob.model_validate(d) for d in docs]


# -- scrape config -----------------------------------------------------------


async def upsert_scrape_config(source, total_products):
    db = get_db()
    await db.scrape_config.update_one(
        {"_id": source},
        {
            "$set": {
                "source": source,
                "last_incremental_sync": utcnow(),
                "total_products": total_products,
            }
        },
        upsert=True,
    )


async def get_scrape_configs():
    db = get_db()
    docs = await db.scrape_config.find({}).to_list(length=None)
    return [ScrapeConfig.model_validate(d) for d in docs]


# -- search demand -----------------------------------------------------------


async def track_search_demand(query):
    """Count one more search for ``query`` that live federation had to answer."""
    normalized = query.strip().lower()
    if not normalized:
        return
    db = get_db()
    await db.search_demand.update_one(
        {"_id": normalized},
        {
            "$inc": {"hit_count": 1},
            "$set": {"last_searched": utcnow()},
            "$setOnInsert": {
                "query": normalized,
                "scrape_attempted": False,
                "scrape_found_results": False,
            },
        },
        upsert=True,
    )


async def pending_demands(limit=20):
    """Unattempted demand rows, most searched first, as SearchDemand models."""
    db = get_db()
    docs = (
        await db.search_demand.find({"scrape_attempted": False})
        .sort([("hit_count", -1)])
        .limit(limit)
        .to_list(length=limit)
    )
    return [SearchDemand.model_validate(d) for d in docs]


async def mark_demand_attempted(query, found_results):
    db = get_db()
    await db.search_demand.update_one(
        {"_id": query},
        {
            "$set": {
                "scrape_attempted": True,
                "scrape_found_results": bool(found_results),
                "attempted_at": utcnow(),
            }
        },
    )
