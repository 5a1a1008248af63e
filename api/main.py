# api/main.py
from contextlib import asynccontextmanager
from typing import List, Optional
import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from crawler import db
from crawler.crawler import Scraper
from crawler.models import JobType
from providers.models import NormalizedProduct, Source
from scheduler.reporter import collect_scrape_status
from scheduler.scheduler import ScraperScheduler, UnknownTrigger
from search.federation import SearchFederation
from search.models import SearchResult
from utils.background import BackgroundTasks
from utils.errors import ConfigurationMissing, FoodDataError, NotFound, UpstreamUnavailable
from .rate_limit import limiter, register_rate_limit

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "false").lower() == "true"

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)

_engine = None
_scheduler = None
scrape_tasks = BackgroundTasks("api-scrape")


def get_search_engine():
    global _engine
    if _engine is None:
        _engine = SearchFederation()
    return _engine


def get_scheduler():
    global _scheduler
    if _scheduler is None:
        _scheduler = ScraperScheduler()
    return _scheduler


def get_scraper_factory():
    return Scraper


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await db.ensure_indexes()
    except Exception as e:
        logger.warning(f"Could not create MongoDB indexes: {e}")
    if SCHEDULER_ENABLED:
        get_scheduler().start()
    yield
    if _scheduler is not None:
        await _scheduler.stop()
    await scrape_tasks.drain()
    if _engine is not None:
        await _engine.close()


app = FastAPI(title="Food Federation API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotFound: 404,
    UpstreamUnavailable: 503,
    ConfigurationMissing: 503,
}


@app.exception_handler(FoodDataError)
async def food_data_error_handler(request: Request, exc: FoodDataError):
    """Map the error hierarchy onto HTTP status codes (500 for anything unmapped)."""
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(
        status_code=status,
        content={"error_code": exc.error_code, "detail": exc.message, "details": exc.details},
    )


class ResolveRequest(BaseModel):
    queries: List[str] = Field(..., min_length=1, max_length=50)
    page_size: int = Field(5, ge=1, le=50)


class ScrapeRunRequest(BaseModel):
    source: Source
    max_products: Optional[int] = Field(None, ge=1)
    job_type: JobType = JobType.INCREMENTAL


class ScrapeQueryRequest(BaseModel):
    query: str = Field(..., min_length=1)


@app.get("/foods/search", response_model=SearchResult)
@limiter.limit("60/minute")
async def search_foods(
    request: Request,
    q: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    engine: SearchFederation = Depends(get_search_engine),
):
    """
    Federated search across USDA and Open Food Facts.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        q (str): Free-text query in any language
        page (int): 1-based page. Only page 1 is served from the cache.
        page_size (int): Number of products, 1-100. Defaults to 20

    Returns:
        SearchResult: Merged products, ``total_count``, ``has_more`` and the
            per-source ``{count, error}`` map

    Rate Limit:
        60 requests per minute per client

    Note:
        Provider failures are reported in ``sources``; this endpoint answers
        200 even when both providers are down.
    """
    return await engine.federated_search(q, page=page, page_size=page_size)


@app.get("/foods/search/fast", response_model=SearchResult)
@limiter.limit("60/minute")
async def fast_search_foods(
    request: Request,
    q: str = Query(..., min_length=1),
    page_size: int = Query(20, ge=1, le=100),
    engine: SearchFederation = Depends(get_search_engine),
):
    """First-provider-wins search for type-ahead; the slower source reports "pending"."""
    return await engine.fast_search(q, page_size=page_size)


@app.post("/foods/resolve", response_model=List[SearchResult])
@limiter.limit("20/minute")
async def resolve_foods(
    request: Request,
    body: ResolveRequest,
    engine: SearchFederation = Depends(get_search_engine),
):
    return await engine.resolve_many(body.queries, page_size=body.page_size)


@app.get("/foods/barcode/{barcode}", response_model=NormalizedProduct)
@limiter.limit("60/minute")
async def get_by_barcode(
    request: Request,
    barcode: str,
    engine: SearchFederation = Depends(get_search_engine),
):
    """
    Resolve a scanned barcode.

    Raises:
        404: the barcode is unknown to Open Food Facts
        503: Open Food Facts could not be reached after retries
    """
    return await engine.lookup_barcode(barcode)


@app.get("/foods/usda/{fdc_id}", response_model=NormalizedProduct)
@limiter.limit("60/minute")
async def get_usda_food(
    request: Request,
    fdc_id: int,
    engine: SearchFederation = Depends(get_search_engine),
):
    """Fetch one USDA food by FDC id; 404 when USDA does not know it."""
    return await engine.lookup_food(fdc_id)


@app.get("/scrape/status")
@limiter.limit("30/minute")
async def scrape_status(request: Request, limit: int = Query(10, ge=1, le=100)):
    """
    Catalog size per source, ScrapeConfig rows and the most recent jobs.

    Returns:
        dict: ``catalog``, ``configs``, ``recent_jobs`` and ``generated_at``
    """
    return await collect_scrape_status(job_limit=limit)


async def _run_scrape(factory, body):
    kwargs = {}
    if body.max_products is not None:
        kwargs["max_products_per_run"] = body.max_products
    async with factory(body.source, **kwargs) as scraper:
        await scraper.run(body.job_type)


@app.post("/scrape/run", status_code=202)
@limiter.limit("10/minute")
async def run_scrape(
    request: Request,
    body: ScrapeRunRequest,
    factory=Depends(get_scraper_factory),
):
    """
    Start a ledgered scrape run in the background and return immediately.

    Progress is visible through ``GET /scrape/status``; a failed run shows up
    there as a FAILED job.
    """
    scrape_tasks.submit(_run_scrape(factory, body), label=f"scrape-{body.source.value}")
    logger.info(f"Scrape run accepted: {body.model_dump(mode='json')}")
    return {"status": "accepted", "source": body.source.value, "job_type": body.job_type.value}


@app.post("/scrape/query")
@limiter.limit("10/minute")
async def scrape_query(
    request: Request,
    body: ScrapeQueryRequest,
    factory=Depends(get_scraper_factory),
):
    """
    Run ``scrape_by_query`` against both providers and report the upsert counts.

    A provider failure is reported as an error string for that source.
    """
    results = {}
    for source in (Source.USDA, Source.OPEN_FOOD_FACTS):
        async with factory(source) as scraper:
            try:
                results[source.value] = {"upserted": await scraper.scrape_by_query(body.query)}
            except FoodDataError as e:
                results[source.value] = {"upserted": 0, "error": str(e)}
    return {"query": body.query, "results": results}


@app.get("/scheduler")
@limiter.limit("30/minute")
async def scheduler_status(request: Request, scheduler=Depends(get_scheduler)):
    return {"running": scheduler.scheduler.running, "triggers": scheduler.status()}


@app.post("/scheduler/{trigger}/{action}")
@limiter.limit("10/minute")
async def control_trigger(
    request: Request, trigger: str, action: str, scheduler=Depends(get_scheduler)
):
    """
    Start or stop one scheduler trigger.

    Args:
        trigger (str): usda-incremental, off-incremental, demand-scrape or
            popularity-refresh
        action (str): "start" or "stop"

    Raises:
        HTTPException: 404 for an unknown trigger or action
    """
    if action not in ("start", "stop"):
        raise HTTPException(status_code=404, detail=f"Unknown action {action}")
    try:
        if action == "start":
            scheduler.start_trigger(trigger)
        else:
            scheduler.stop_trigger(trigger)
    except UnknownTrigger:
        raise HTTPException(status_code=404, detail=f"Unknown trigger {trigger}")
    return {"trigger": trigger, "action": action, "triggers": scheduler.status()}


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
