# scheduler/scheduler.py
import asyncio
from datetime import timedelta
import logging
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from crawler import db
from crawler.crawler import Scraper
from crawler.models import JobType
from providers.models import Source
from scheduler.reporter import generate_scrape_report
from search.cache import ResultCache

load_dotenv()
SCRAPE_USDA_ENABLED = os.getenv("SCRAPE_USDA_ENABLED", "true").lower() == "true"
SCRAPE_OFF_ENABLED = os.getenv("SCRAPE_OFF_ENABLED", "true").lower() == "true"
DEMAND_BATCH_SIZE = 20
DEMAND_MAX_PRODUCTS = 100
POPULARITY_THRESHOLD = 50
POPULARITY_STALE_DAYS = 30
POPULARITY_BATCH_SIZE = 100

logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)

# trigger name -> (crontab, method name)
TRIGGERS = {
    "usda-incremental": ("0 3 * * *", "run_usda_incremental"),
    "off-incremental": ("0 2 * * *", "run_off_incremental"),
    "demand-scrape": ("0 */6 * * *", "run_demand_scrape"),
    "popularity-refresh": ("0 4 * * sun", "run_popularity_refresh"),
}


class UnknownTrigger(KeyError):
    pass


class ScraperScheduler:
    """
    Periodic crawl triggers on an APScheduler AsyncIOScheduler.

    Triggers:
        - usda-incremental: daily 03:00 UTC
        - off-incremental: daily 02:00 UTC
        - demand-scrape: every 6 hours
        - popularity-refresh: Sundays 04:00 UTC

    Each trigger can be started and stopped on its own. Every run method
    catches and logs its own exceptions so one failed run never stops the
    scheduler or the other triggers.

    Note:
        APScheduler keeps ``max_instances=1`` per job, so a trigger firing
        while its previous run is still going is skipped in this process.
        Nothing prevents two processes from crawling the same provider.
    """

    def __init__(
        self,
        scraper_factory=Scraper,
        report=generate_scrape_report,
        usda_enabled=SCRAPE_USDA_ENABLED,
        off_enabled=SCRAPE_OFF_ENABLED,
        scheduler=None,
    ):
        self.scraper_factory = scraper_factory
        self.report = report
        self.enabled = {Source.USDA: usda_enabled, Source.OPEN_FOOD_FACTS: off_enabled}
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    def _trigger(self, name):
        if name not in TRIGGERS:
            raise UnknownTrigger(name)
        return TRIGGERS[name]

    def start(self):
        """Register every trigger whose provider is enabled and start the scheduler."""
        for name in TRIGGERS:
            if name == "usda-incremental" and not self.enabled[Source.USDA]:
                logger.info("USDA scraping disabled, not scheduling usda-incremental")
                continue
            if name == "off-incremental" and not self.enabled[Source.OPEN_FOOD_FACTS]:
                logger.info("OFF scraping disabled, not scheduling off-incremental")
                continue
            self.start_trigger(name)
        logger.info("Scraper scheduler started")

    async def stop(self):
        """
        Remove every trigger and shut the scheduler down.

        Note:
            AsyncIOScheduler runs ``shutdown`` as an event loop callback, so
            this yields once to let it complete before returning.
        """
        for name in TRIGGERS:
            self.stop_trigger(name)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            await asyncio.sleep(0)
        logger.info("Scraper scheduler stopped")

    def start_trigger(self, name):
        """
        Schedule one trigger, starting the underlying scheduler if needed.

        Raises:
            UnknownTrigger: ``name`` is not one of TRIGGERS
        """
        crontab, method = self._trigger(name)
        self.scheduler.add_job(
            getattr(self, method),
            CronTrigger.from_crontab(crontab, timezone="UTC"),
            id=name,
            name=name,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Trigger {name} scheduled ({crontab})")

    def stop_trigger(self, name):
        """Unschedule one trigger; stopping an inactive trigger is a no-op."""
        self._trigger(name)
        if self.scheduler.get_job(name) is not None:
            self.scheduler.remove_job(name)
            logger.info(f"Trigger {name} stopped")

    def status(self):
        """
        Returns:
            list[dict]: One entry per trigger with ``name``, ``schedule``,
                ``active`` and ``next_run_time`` (ISO string or None)
        """
        entries = []
        for name, (crontab, _) in TRIGGERS.items():
            job = self.scheduler.get_job(name)
            next_run = getattr(job, "next_run_time", None) if job else None
            entries.append(
                {
                    "name": name,
                    "schedule": crontab,
                    "active": job is not None,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return entries

    async def run_incremental(self, source):
        """Run one ledgered INCREMENTAL crawl for ``source`` and write the status report."""
        source = Source(source)
        if not self.enabled[source]:
            logger.info(f"{source.value} scraping disabled, skipping incremental run")
            return None

        result = None
        try:
            async with self.scraper_factory(source) as scraper:
                result = await scraper.run(JobType.INCREMENTAL)
            logger.info(f"{source.value} incremental crawl finished: {result.model_dump()}")
        except Exception as e:
            logger.exception(f"{source.value} incremental crawl failed: {e}")

        try:
            await self.report()
        except Exception as e:
            logger.exception(f"Scrape report failed: {e}")
        return result

    async def run_usda_incremental(self):
        return await self.run_incremental(Source.USDA)

    async def run_off_incremental(self):
        return await self.run_incremental(Source.OPEN_FOOD_FACTS)

    async def _scrape_demand(self, scrapers, query):
        results = await asyncio.gather(
            *(s.scrape_by_query(query) for s in scrapers), return_exceptions=True
        )
        found = 0
        for scraper, res in zip(scrapers, results):
            if isinstance(res, Exception):
                logger.warning(f'{scraper.source.value} demand scrape for "{query}" failed: {res}')
                continue
            found += res
        return found

    async def run_demand_scrape(self):
        """
        Crawl the most searched queries that have not been attempted yet.

        Takes up to DEMAND_BATCH_SIZE rows by ``hit_count``, runs
        ``scrape_by_query`` on every enabled provider in parallel, and marks
        each row attempted with whether anything was found. A provider
        failure counts as zero results.

        Returns:
            int: Number of demand rows processed
        """
        try:
            demands = await db.pending_demands(DEMAND_BATCH_SIZE)
            if not demands:
                logger.info("No pending search demand")
                return 0

            scrapers = [
                self.scraper_factory(source, max_products_per_run=DEMAND_MAX_PRODUCTS)
                for source, enabled in self.enabled.items()
                if enabled
            ]
            try:
                for demand in demands:
                    found = await self._scrape_demand(scrapers, demand.query)
                    await db.mark_demand_attempted(demand.query, found > 0)
            finally:
                for scraper in scrapers:
                    await scraper.close()
            logger.info(f"Demand scrape processed {len(demands)} queries")
            return len(demands)
        except Exception as e:
            logger.exception(f"Demand scrape failed: {e}")
            return 0

    async def run_popularity_refresh(self):
        """
        Refresh ``updated_at`` on popular records that went stale and drop
        expired search cache rows.

        Returns:
            int: Number of catalog rows touched
        """
        try:
            cutoff = db.utcnow() - timedelta(days=POPULARITY_STALE_DAYS)
            stale = await db.find_stale_popular(
                POPULARITY_THRESHOLD, cutoff, POPULARITY_BATCH_SIZE
            )
            touched = await db.touch_products([doc["_id"] for doc in stale])
            logger.info(f"Popularity refresh touched {touched} products")
            await ResultCache().purge_expired()
            return touched
        except Exception as e:
            logger.exception(f"Popularity refresh failed: {e}")
            return 0


async def async_main():
    scheduler = ScraperScheduler()
    await db.ensure_indexes()
    scheduler.start()
    # Keep program running forever
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(async_main())
