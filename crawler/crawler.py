# crawler/crawler.py
import asyncio
import os
import sys
import logging

from httpx import AsyncClient, HTTPError
from dotenv import load_dotenv

from providers.models import Source
from providers.nutrition import has_complete_nutrition, quality_score
from utils.errors import ScrapeBatchFailed, ScrapeItemInvalid, UpstreamUnavailable
from utils.helpers import RateLimiter
from . import db
from .models import JobStatus, JobType, ScrapeResult
from .off import OFF_VARIANT
from .usda import USDA_VARIANT

load_dotenv()
MAX_PRODUCTS_PER_RUN = int(os.getenv("SCRAPE_MAX_PRODUCTS_PER_RUN", "5000"))
SCRAPE_TIMEOUT = float(os.getenv("SCRAPE_TIMEOUT_SECONDS", "30"))
MAX_CONSECUTIVE_ERRORS = 10
USER_AGENT = os.getenv("OPEN_FOOD_FACTS_USER_AGENT", "FoodFederation/1.0")

logger = logging.getLogger("crawler")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)

SCRAPER_VARIANTS = {
    Source.USDA: USDA_VARIANT,
    Source.OPEN_FOOD_FACTS: OFF_VARIANT,
}


def catalog_record(product, now=None):
    """
    Build the catalog document stored for a normalized product.

    Args:
        product (NormalizedProduct): Normalized upstream record
        now (datetime, optional): Timestamp for scraped_at/updated_at

    Returns:
        dict: Document keyed by ``_id`` = deterministic product id, with
            lower-cased name/brand for lookups, quality score and
            completeness flag. ``popularity`` is deliberately absent so an
            update never resets it.
    """
    now = now or db.utcnow()
    doc = product.model_dump(mode="json", exclude={"id"})
    doc.update(
        {
            "_id": product.id,
            "name_lower": product.name.lower(),
            "brand_lower": product.brand.lower() if product.brand else None,
            "has_complete_nutrition": has_complete_nutrition(product),
            "quality_score": quality_score(product),
            "scraped_at": now,
            "updated_at": now,
        }
    )
    return doc


def parse_cursor(cursor):
    """Cursors are 1-based page numbers; anything unreadable restarts at page 1."""
    if not cursor:
        return 1
    try:
        return max(int(cursor), 1)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unreadable cursor {cursor!r}, starting at page 1")
        return 1


class Scraper:
    """
    Rate-limited, cursor-resumable crawler for one provider.

    Provider specifics (endpoints, pagination, validity, normalization and
    rate limit) come from the variant registered in SCRAPER_VARIANTS; this
    class owns the job ledger lifecycle, the rate limiter and catalog writes.

    Run state machine:
        CREATED --start_job--> RUNNING --success--> COMPLETED
                                       --uncaught error--> FAILED
    """

    def __init__(
        self,
        source,
        max_products_per_run=MAX_PRODUCTS_PER_RUN,
        client=None,
        variant=None,
        max_consecutive_errors=MAX_CONSECUTIVE_ERRORS,
    ):
        self.variant = variant or SCRAPER_VARIANTS[Source(source)]
        self.source = self.variant.source
        self.max_products_per_run = max_products_per_run
        self.max_consecutive_errors = max_consecutive_errors
        self.limiter = RateLimiter(self.variant.rate_limit.delay_seconds)
        self.client = client or AsyncClient(
            timeout=SCRAPE_TIMEOUT, headers={"User-Agent": USER_AGENT}
        )
        self.job_id = None
        self.tag = f"[{self.source.value.upper()}]"

    async def close(self):
        """Close the HTTP client and release resources."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def rate_limited_fetch(self, method, url, **kwargs):
        """
        Send one request after waiting out this scraper's rate limit.

        Args:
            method (str): HTTP method
            url (str): Absolute URL
            **kwargs: Passed to ``httpx.AsyncClient.request``

        Returns:
            httpx.Response: A 2xx response

        Raises:
            UpstreamUnavailable: transport error or non-2xx status. There is
                no retry here; the page loop decides what to do next.
        """
        await self.limiter.wait()
        try:
            resp = await self.client.request(method, url, **kwargs)
        except HTTPError as e:
            raise UpstreamUnavailable(
                self.source.value, f"{type(e).__name__}: {e}"
            ) from e
        if resp.is_error:
            raise UpstreamUnavailable(
                self.source.value,
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        return resp

    def to_product(self, raw):
        """
        Validate and normalize one raw record.

        A record whose fields have an unexpected shape (a string where an
        object is expected, null list entries) is invalid, same as one missing
        its name or energy value.

        Raises:
            ScrapeItemInvalid: the record cannot become a catalog product
        """
        external_id = (raw.get("fdcId") or raw.get("code")) if isinstance(raw, dict) else None
        try:
            valid = self.variant.is_valid(raw)
            if valid:
                return self.variant.normalize(raw)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            raise ScrapeItemInvalid(self.source.value, external_id, str(e)) from e
        raise ScrapeItemInvalid(self.source.value, external_id, "missing name or energy value")

    async def upsert_product(self, product):
        """Write one product to the catalog; False when the write failed."""
        try:
            await db.upsert_product(catalog_record(product))
            return True
        except Exception as e:
            logger.error(f"{self.tag} Failed to upsert product {product.id}: {e}")
            return False

    async def ingest(self, items, budget):
        """
        Validate, normalize and upsert a batch of raw records.

        Args:
            items (list[dict]): Raw upstream records
            budget (int): Maximum number of records to process

        Returns:
            ScrapeResult: Counters for this batch (no cursor)
        """
        counts = ScrapeResult()
        for raw in items:
            if counts.products_processed >= budget:
                break
            counts.products_processed += 1
            try:
                product = self.to_product(raw)
            except ScrapeItemInvalid as e:
                logger.debug(f"{self.tag} Skipped: {e.message}")
                counts.products_skipped += 1
                continue
            if await self.upsert_product(product):
                counts.products_upserted += 1
            else:
                counts.errors += 1
        return counts

    async def scrape_incremental(self, cursor=None):
        """
        Crawl the provider's bulk listing starting at ``cursor``.

        Args:
            cursor (str, optional): Page number to resume from. Defaults to page 1.

        Returns:
            ScrapeResult: Totals of the run and ``next_cursor``, the page the
                next incremental run should start from

        Stop conditions:
            - ``max_products_per_run`` records processed
            - an empty page
            - the provider reports the listing exhausted
            - more than ``max_consecutive_errors`` failed pages in a row

        Note:
            A failed page is counted, recorded on the job and skipped. Job
            progress is persisted after every page. A page cut short by the
            budget is resumed from its start next time.
        """
        result = ScrapeResult(next_cursor=cursor)
        if not self.variant.is_configured():
            logger.error(f"{self.tag} Credentials not configured, skipping scrape")
            result.errors = 1
            return result

        page = parse_cursor(cursor)
        consecutive_errors = 0
        logger.info(f"{self.tag} Starting incremental scrape from page {page}")

        while result.products_processed < self.max_products_per_run:
            try:
                listing = await self.variant.fetch_page(self, page)
            except Exception as e:
                result.errors += 1
                consecutive_errors += 1
                logger.warning(f"{self.tag} Error on page {page}: {e}")
                await self.update_job_progress(
                    error_count=1, last_error=str(e) or type(e).__name__
                )
                page += 1
                if consecutive_errors > self.max_consecutive_errors:
                    logger.error(f"{self.tag} Too many consecutive errors, stopping")
                    break
                continue

            consecutive_errors = 0
            if not listing.items:
                logger.info(f"{self.tag} No more products at page {page}")
                break

            budget = self.max_products_per_run - result.products_processed
            counts = await self.ingest(listing.items, budget)
            result.products_processed += counts.products_processed
            result.products_upserted += counts.products_upserted
            result.products_skipped += counts.products_skipped
            result.errors += counts.errors

            page_done = counts.products_processed == len(listing.items)
            advance = page_done and not listing.exhausted
            await self.update_job_progress(
                products_scraped=counts.products_processed,
                products_updated=counts.products_upserted,
                error_count=counts.errors,
                last_cursor=str(page + 1 if advance else page),
            )
            logger.info(
                f"{self.tag} Page {page}: processed {counts.products_processed}, "
                f"upserted {counts.products_upserted}, skipped {counts.products_skipped}"
            )

            if not advance:
                if listing.exhausted:
                    logger.info(f"{self.tag} Reached last page {page}")
                break
            page += 1

        result.next_cursor = str(page)
        return result

    async def scrape_by_query(self, query):
        """
        Fetch and upsert products matching a single search query.

        Used by demand-driven crawling and diagnostics. Transport errors are
        raised to the caller.

        Returns:
            int: Number of products upserted
        """
        if not self.variant.is_configured():
            logger.error(f"{self.tag} Credentials not configured, skipping query scrape")
            return 0

        logger.info(f"{self.tag} Scraping by query: {query}")
        upserted = 0
        for raw in await self.variant.search(self, query):
            try:
                product = self.to_product(raw)
            except ScrapeItemInvalid:
                continue
            if await self.upsert_product(product):
                upserted += 1
        logger.info(f'{self.tag} Query "{query}": upserted {upserted} products')
        return upserted

    async def start_job(self, job_type, cursor=None):
        self.job_id = await db.insert_job(
            self.source.value, JobType(job_type).value, cursor
        )
        return self.job_id

    async def update_job_progress(
        self,
        products_scraped=0,
        products_updated=0,
        error_count=0,
        last_cursor=None,
        last_error=None,
    ):
        """Increment the open job's counters and record cursor/error if given."""
        if not self.job_id:
            return
        set_fields = {}
        if last_cursor is not None:
            set_fields["last_cursor"] = last_cursor
        if last_error is not None:
            set_fields["last_error"] = last_error
        inc_fields = {
            k: v
            for k, v in (
                ("products_scraped", products_scraped),
                ("products_updated", products_updated),
                ("error_count", error_count),
            )
            if v
        }
        await db.update_job(self.job_id, set_fields, inc_fields)

    async def complete_job(self, status, last_cursor=None, last_error=None):
        """
        Close the open job as COMPLETED or FAILED.

        A COMPLETED job also refreshes the provider's ScrapeConfig row with
        the sync time and the current catalog size for this source.
        """
        if not self.job_id:
            return
        set_fields = {"status": JobStatus(status).value, "completed_at": db.utcnow()}
        if last_cursor is not None:
            set_fields["last_cursor"] = last_cursor
        if last_error is not None:
            set_fields["last_error"] = last_error
        await db.update_job(self.job_id, set_fields)

        if status == JobStatus.COMPLETED:
            total = await db.count_products(self.source.value)
            await db.upsert_scrape_config(self.source.value, total)
        self.job_id = None

    async def get_last_cursor(self):
        job = await db.last_completed_job(self.source.value)
        return job.last_cursor if job else None

    async def run(self, job_type=JobType.INCREMENTAL):
        """
        Execute one ledgered scrape run.

        Args:
            job_type (JobType): INCREMENTAL resumes from the last completed
                job's cursor; DEMAND starts from the first page

        Returns:
            ScrapeResult: Totals of the run

        Raises:
            ScrapeBatchFailed: an error escaped the page loop. The job is
                marked FAILED with the error text before this is raised.
        """
        job_type = JobType(job_type)
        cursor = await self.get_last_cursor() if job_type == JobType.INCREMENTAL else None
        job_id = await self.start_job(job_type, cursor)

        try:
            result = await self.scrape_incremental(cursor)
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.exception(f"{self.tag} Scrape job {job_id} failed: {reason}")
            await self.complete_job(JobStatus.FAILED, last_error=reason)
            raise ScrapeBatchFailed(self.source.value, job_id, reason) from e

        await self.complete_job(JobStatus.COMPLETED, last_cursor=result.next_cursor)
        logger.info(f"{self.tag} Scrape job {job_id} completed: {result.model_dump()}")
        return result


# convenience script
async def main(source="off"):
    async with Scraper(source) as scraper:
        await scraper.run(JobType.INCREMENTAL)


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))
