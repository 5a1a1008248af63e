# search/cache.py
import logging
from datetime import timedelta

from crawler import db
from utils.background import BackgroundTasks
from utils.helpers import normalize_query, query_hash
from .models import CachedSearch

CACHE_TTL = timedelta(hours=24)

logger = logging.getLogger("search.cache")


class ResultCache:
    """
    TTL cache of page-1 federated search results in ``search_cache``.

    Rows are keyed by the SHA-256 of the trimmed, lower-cased query. The
    cache is a disposable projection: read failures are misses, write
    failures are logged by the background runner.
    """

    def __init__(self, ttl=CACHE_TTL, background=None):
        self.ttl = ttl
        self.background = background or BackgroundTasks("cache")

    @property
    def collection(self):
        return db.get_db().search_cache

    async def get(self, query):
        """
        Return the cached payload for ``query`` or None.

        Expired rows count as a miss and are deleted in the background.
        A hit increments ``hit_count`` in the background.
        """
        key = query_hash(query)
        try:
            doc = await self.collection.find_one({"_id": key})
        except Exception as e:
            logger.warning(f"Cache read failed for {normalize_query(query)!r}: {e}")
            return None
        if not doc:
            return None

        if doc["expires_at"] <= db.utcnow():
            self.background.submit(
                self.collection.delete_one({"_id": key}), label="cache-expire"
            )
            return None

        self.background.submit(
            self.collection.update_one({"_id": key}, {"$inc": {"hit_count": 1}}),
            label="cache-hit",
        )
        return CachedSearch(
            products=doc.get("products") or [],
            total_count=doc.get("total_count") or 0,
            sources=doc.get("sources") or {},
            page_size=doc.get("page_size") or 0,
        )

    async def put(self, query, result):
        """
        Store ``result`` (a CachedSearch or SearchResult) for ``query``.

        A new row starts with ``hit_count`` 0; rewriting an existing row
        refreshes ``expires_at`` and increments ``hit_count``.
        """
        key = query_hash(query)
        now = db.utcnow()
        fields = {
            "query": normalize_query(query),
            "products": [p.model_dump(mode="json") for p in result.products],
            "total_count": result.total_count,
            "sources": {k: v.model_dump() for k, v in result.sources.items()},
            "page_size": result.page_size,
            "expires_at": now + self.ttl,
        }
        res = await self.collection.update_one(
            {"_id": key}, {"$set": fields, "$inc": {"hit_count": 1}}
        )
        if res.matched_count == 0:
            await self.collection.update_one(
                {"_id": key},
                {"$set": fields, "$setOnInsert": {"created_at": now, "hit_count": 0}},
                upsert=True,
            )

    async def purge_expired(self):
        res = await self.collection.delete_many({"expires_at": {"$lte": db.utcnow()}})
        if res.deleted_count:
            logger.info(f"Purged {res.deleted_count} expired cache rows")
        return res.deleted_count
