# tests/test_scheduler.py
from datetime import timedelta

import pytest

from crawler import db
from conftest import FakeScraperFactory
from providers.models import Source
from scheduler.scheduler import TRIGGERS, ScraperScheduler, UnknownTrigger
from utils.errors import ScrapeBatchFailed, UpstreamUnavailable


@pytest.fixture
def factory():
    return FakeScraperFactory()


@pytest.fixture
def reports():
    calls = []

    async def report():
        calls.append(1)

    report.calls = calls
    return report


@pytest.mark.asyncio
async def test_incremental_run_then_report(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    result = await sched.run_off_incremental()

    assert result.products_upserted == 3
    assert factory.runs[0][0] == Source.OPEN_FOOD_FACTS
    assert factory.created[0].closed is True
    assert reports.calls == [1]


@pytest.mark.asyncio
async def test_failed_incremental_run_is_logged_not_raised(factory, reports):
    factory.run_error = ScrapeBatchFailed("usda", "job-1", "boom")
    sched = ScraperScheduler(scraper_factory=factory, report=reports)

    assert await sched.run_usda_incremental() is None
    assert reports.calls == [1]


@pytest.mark.asyncio
async def test_disabled_provider_is_skipped(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports, usda_enabled=False)
    assert await sched.run_usda_incremental() is None
    assert factory.runs == []
    assert reports.calls == []


@pytest.mark.asyncio
async def test_demand_scrape_marks_rows_and_isolates_provider_failures(fake_db, factory, reports):
    for query, hits in (("kimchi", 9), ("skyr", 4), ("tempeh", 1)):
        for _ in range(hits):
            await db.track_search_demand(query)
    await db.mark_demand_attempted("tempeh", False)

    factory.query_results = {
        (Source.USDA, "kimchi"): UpstreamUnavailable("usda", "down"),
        (Source.OPEN_FOOD_FACTS, "kimchi"): 0,
        (Source.USDA, "skyr"): UpstreamUnavailable("usda", "down"),
        (Source.OPEN_FOOD_FACTS, "skyr"): 7,
    }
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    processed = await sched.run_demand_scrape()

    assert processed == 2
    rows = {d["_id"]: d for d in fake_db.search_demand.docs}
    assert rows["kimchi"]["scrape_attempted"] is True
    assert rows["kimchi"]["scrape_found_results"] is False
    assert rows["skyr"]["scrape_attempted"] is True
    assert rows["skyr"]["scrape_found_results"] is True
    # highest hit_count first, already attempted rows ignored
    assert [q for s, q in factory.queries if s == Source.USDA] == ["kimchi", "skyr"]
    assert all(s.max_products_per_run == 100 for s in factory.created)
    assert all(s.closed for s in factory.created)


@pytest.mark.asyncio
async def test_demand_scrape_with_nothing_pending(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    assert await sched.run_demand_scrape() == 0
    assert factory.created == []


@pytest.mark.asyncio
async def test_popularity_refresh_touches_stale_popular_rows(fake_db, factory, reports):
    old = db.utcnow() - timedelta(days=40)
    fake_db.food_products.docs = [
        {"_id": "off_1", "popularity": 80, "updated_at": old},
        {"_id": "off_2", "popularity": 10, "updated_at": old},
        {"_id": "off_3", "popularity": 80, "updated_at": db.utcnow()},
    ]
    sched = ScraperScheduler(scraper_factory=factory, report=reports)

    assert await sched.run_popularity_refresh() == 1
    docs = {d["_id"]: d for d in fake_db.food_products.docs}
    assert docs["off_1"]["updated_at"] > old
    assert docs["off_2"]["updated_at"] == old


@pytest.mark.asyncio
async def test_popularity_refresh_swallows_storage_errors(monkeypatch, factory, reports):
    def broken():
        raise ConnectionError("mongo down")

    monkeypatch.setattr("crawler.db.get_db", broken)
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    assert await sched.run_popularity_refresh() == 0


@pytest.mark.asyncio
async def test_triggers_start_and_stop_independently(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    sched.start()
    try:
        status = {t["name"]: t for t in sched.status()}
        assert set(status) == set(TRIGGERS)
        assert all(t["active"] for t in status.values())
        assert status["demand-scrape"]["next_run_time"] is not None

        sched.stop_trigger("demand-scrape")
        status = {t["name"]: t for t in sched.status()}
        assert status["demand-scrape"]["active"] is False
        assert status["usda-incremental"]["active"] is True

        sched.start_trigger("demand-scrape")
        assert sched.scheduler.get_job("demand-scrape") is not None

        with pytest.raises(UnknownTrigger):
            sched.start_trigger("hourly-nonsense")
    finally:
        await sched.stop()

    assert sched.scheduler.running is False
    assert not any(t["active"] for t in sched.status())


@pytest.mark.asyncio
async def test_disabled_provider_trigger_not_scheduled(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports, off_enabled=False)
    sched.start()
    try:
        status = {t["name"]: t["active"] for t in sched.status()}
        assert status["off-incremental"] is False
        assert status["usda-incremental"] is True
    finally:
        await sched.stop()


@pytest.mark.asyncio
async def test_trigger_started_after_stop_restarts_scheduler(factory, reports):
    sched = ScraperScheduler(scraper_factory=factory, report=reports)
    sched.start()
    await sched.stop()
    assert sched.scheduler.running is False

    sched.start_trigger("demand-scrape")
    try:
        assert sched.scheduler.running is True
        active = {t["name"]: t["active"] for t in sched.status()}
        assert active["demand-scrape"] is True
        assert active["usda-incremental"] is False
    finally:
        await sched.stop()
