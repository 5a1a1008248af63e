# search/federation.py
import asyncio
import logging
import math
import os

from dotenv import load_dotenv

from crawler import db
from providers.base import PROVIDER_TIMEOUT
from providers.models import NormalizedProduct, Source
from providers.openfoodfacts import OpenFoodFactsClient
from providers.usda import UsdaClient
from utils.background import BackgroundTasks
from utils.helpers import network_retry
from .cache import ResultCache
from .classifier import classify
from .models import PENDING, QueryKind, SearchResult, SourceStatus
from .translation import QueryNormalizer

load_dotenv()
LOCAL_SEARCH_ENABLED = os.getenv("LOCAL_SEARCH_ENABLED", "false").lower() == "true"
LOCAL_SEARCH_MIN_RESULTS = int(os.getenv("LOCAL_SEARCH_MIN_RESULTS", "10"))
RESOLVE_CONCURRENCY = 5

logger = logging.getLogger("search")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)

USDA = Source.USDA.value
OFF = Source.OPEN_FOOD_FACTS.value


def filter_branded(items, classification):
    """Drop branded Open Food Facts items from a whole-food query that names no brand."""
    if classification.kind == QueryKind.WHOLE_FOOD and not classification.is_explicit_brand_search:
        return [p for p in items if p.brand is None]
    return list(items)


def merge_results(usda_items, off_items, kind, page_size):
    """
    Order the two provider lists by query kind and cut to ``page_size``.

    WHOLE_FOOD puts USDA first, BRANDED puts Open Food Facts first and
    UNKNOWN alternates USDA/OFF, continuing with whichever list is longer.
    """
    if kind == QueryKind.WHOLE_FOOD:
        merged = list(usda_items) + list(off_items)
    elif kind == QueryKind.BRANDED:
        merged = list(off_items) + list(usda_items)
    else:
        merged = []
        for i in range(max(len(usda_items), len(off_items))):
            if i < len(usda_items):
                merged.append(usda_items[i])
            if i < len(off_items):
                merged.append(off_items[i])
    return merged[:page_size]


def catalog_product(doc):
    """Turn a ``food_products`` document back into a NormalizedProduct."""
    data = dict(doc)
    data["id"] = data.pop("_id")
    return NormalizedProduct.model_validate(data)


class SearchFederation:
    """
    Concurrent search over USDA and Open Food Facts with a result cache.

    Every collaborator can be injected; by default real adapters, a
    ResultCache and a QueryNormalizer are built that share one background
    runner. Provider failures never escape the search methods, they are
    reported per source in ``SearchResult.sources``.
    """

    def __init__(
        self,
        usda=None,
        off=None,
        cache=None,
        normalizer=None,
        background=None,
        provider_timeout=PROVIDER_TIMEOUT,
        local_search_enabled=LOCAL_SEARCH_ENABLED,
        min_local_results=LOCAL_SEARCH_MIN_RESULTS,
        lookup_attempts=3,
        lookup_max_wait=10,
    ):
        self.background = background or BackgroundTasks("search")
        self.usda = usda or UsdaClient()
        self.off = off or OpenFoodFactsClient()
        self.cache = cache or ResultCache(background=self.background)
        self.normalizer = normalizer or QueryNormalizer(background=self.background)
        self.provider_timeout = provider_timeout
        self.local_search_enabled = local_search_enabled
        self.min_local_results = min_local_results
        self.lookup_attempts = lookup_attempts
        self.lookup_max_wait = lookup_max_wait

    async def close(self):
        await self.background.drain()
        for closeable in (self.usda, self.off, self.normalizer):
            close = getattr(closeable, "close", None)
            if close is not None:
                await close()

    async def _call(self, source, coro):
        """Await one provider call; returns ``(page, None)`` or ``(None, error)``."""
        try:
            return await asyncio.wait_for(coro, timeout=self.provider_timeout), None
        except asyncio.TimeoutError:
            logger.warning(f"{source} search timed out after {self.provider_timeout}s")
            return None, f"{source} timed out after {self.provider_timeout}s"
        except Exception as e:
            logger.warning(f"{source} search failed: {e}")
            return None, str(e) or type(e).__name__

    def _from_cache(self, cached, page, page_size, translation_info):
        return SearchResult(
            products=cached.products[:page_size],
            total_count=cached.total_count,
            page=page,
            page_size=page_size,
            has_more=page * page_size < cached.total_count,
            sources=cached.sources,
            translation_info=translation_info,
            from_cache=True,
        )

    async def _local_search(self, text, page, page_size, translation_info):
        """Answer from the catalog when it holds enough matches, else None."""
        try:
            docs, total = await db.search_catalog(text, page, page_size)
        except Exception as e:
            logger.warning(f"Catalog search failed for {text!r}: {e}")
            return None
        if total < self.min_local_results:
            return None
        products = [catalog_product(d) for d in docs]
        self.background.submit(
            db.bump_popularity([p.id for p in products]), label="catalog-popularity"
        )
        return SearchResult(
            products=products,
            total_count=total,
            page=page,
            page_size=page_size,
            has_more=page * page_size < total,
            sources={"catalog": SourceStatus(count=len(products))},
            translation_info=translation_info,
        )

    async def federated_search(self, query, page=1, page_size=20):
        """
        Search both providers concurrently and merge by query kind.

        Args:
            query (str): Raw user query, translated to English if needed
            page (int): 1-based page, forwarded to both providers
            page_size (int): Maximum number of products returned

        Returns:
            SearchResult: Merged products, the summed provider hit count and
                a per-source ``{count, error}`` slot

        Note:
            Only page 1 is cached. A cached page written with a smaller
            page size is refetched and replaced. Cache writes and demand
            counters run on the background runner and never delay or fail
            the response.
        """
        normalized = await self.normalizer.normalize(query)
        text = normalized.search_text
        info = normalized.translation_info
        if not text:
            return SearchResult(page=page, page_size=page_size, translation_info=info)

        if page == 1:
            cached = await self.cache.get(text)
            if cached is not None and cached.covers(page_size):
                return self._from_cache(cached, page, page_size, info)

        if self.local_search_enabled:
            local = await self._local_search(text, page, page_size, info)
            if local is not None:
                return local

        if page == 1:
            self.background.submit(db.track_search_demand(text), label="search-demand")

        classification = classify(text)
        per_provider = math.ceil(page_size / 2)
        (usda_page, usda_error), (off_page, off_error) = await asyncio.gather(
            self._call(USDA, self.usda.search(text, page, per_provider)),
            self._call(OFF, self.off.search(text, page, per_provider)),
        )

        usda_items = usda_page.items if usda_page else []
        off_items = filter_branded(off_page.items if off_page else [], classification)
        products = merge_results(usda_items, off_items, classification.kind, page_size)
        total = (usda_page.total if usda_page else 0) + (off_page.total if off_page else 0)

        result = SearchResult(
            products=products,
            total_count=total,
            page=page,
            page_size=page_size,
            has_more=page * page_size < total,
            sources={
                USDA: SourceStatus(count=len(usda_items), error=usda_error),
                OFF: SourceStatus(count=len(off_items), error=off_error),
            },
            translation_info=info,
        )
        logger.info(
            f'Search "{text}" ({classification.kind.value}) page {page}: '
            f"{len(products)} products, total {total}"
        )
        if page == 1 and products:
            self.background.submit(self.cache.put(text, result), label="cache-put")
        return result

    async def fast_search(self, query, page_size=20):
        """
        Return whichever provider answers first, without merging.

        If the first provider to finish failed, the other one is still
        awaited. The provider that lost the race is cancelled and reported
        with a ``"pending"`` count. Results are not written to the cache.
        """
        normalized = await self.normalizer.normalize(query)
        text = normalized.search_text
        info = normalized.translation_info
        if not text:
            return SearchResult(page_size=page_size, translation_info=info)

        cached = await self.cache.get(text)
        if cached is not None and cached.covers(page_size):
            return self._from_cache(cached, 1, page_size, info)

        self.background.submit(db.track_search_demand(text), label="search-demand")
        classification = classify(text)
        tasks = {
            asyncio.ensure_future(self._call(USDA, self.usda.search(text, 1, page_size))): USDA,
            asyncio.ensure_future(self._call(OFF, self.off.search(text, 1, page_size))): OFF,
        }
        sources = {USDA: SourceStatus(count=PENDING), OFF: SourceStatus(count=PENDING)}
        winner = None
        pending = set(tasks)
        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: tasks[t]):
                    page, error = task.result()
                    if error is not None:
                        sources[tasks[task]] = SourceStatus(count=0, error=error)
                    elif winner is None:
                        winner = (tasks[task], page)
        finally:
            for task in pending:
                task.cancel()

        if winner is None:
            return SearchResult(page_size=page_size, sources=sources, translation_info=info)

        source, page = winner
        items = page.items if source == USDA else filter_branded(page.items, classification)
        sources[source] = SourceStatus(count=len(items))
        return SearchResult(
            products=items[:page_size],
            total_count=page.total,
            page=1,
            page_size=page_size,
            has_more=page_size < page.total,
            sources=sources,
            translation_info=info,
        )

    async def lookup_barcode(self, barcode):
        """
        Resolve a scanned barcode through Open Food Facts.

        Raises:
            NotFound: the code is unknown (not retried)
            UpstreamUnavailable: still unreachable after ``lookup_attempts``
        """
        lookup = network_retry(
            attempts=self.lookup_attempts,
            min_wait=0,
            max_wait=self.lookup_max_wait,
        )(self.off.get_by_barcode)
        return await lookup(barcode.strip())

    async def lookup_food(self, fdc_id):
        """
        Fetch one USDA food by FoodData Central id, retried like barcodes.

        Raises:
            NotFound: USDA has no food with this id (not retried)
            UpstreamUnavailable: still unreachable after ``lookup_attempts``
        """
        lookup = network_retry(
            attempts=self.lookup_attempts,
            min_wait=0,
            max_wait=self.lookup_max_wait,
        )(self.usda.get_food)
        return await lookup(fdc_id)

    async def resolve_many(self, queries, page_size=5):
        """
        Resolve several free-text lines (recipe ingredients, meal items) at once.

        Returns:
            list[SearchResult]: One result per query, in input order
        """
        semaphore = asyncio.Semaphore(RESOLVE_CONCURRENCY)

        async def resolve(q):
            async with semaphore:
                return await self.federated_search(q, page=1, page_size=page_size)

        return await asyncio.gather(*(resolve(q) for q in queries))
