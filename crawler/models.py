# crawler/models.py
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from providers.models import NormalizedProduct, Source


class JobType(str, Enum):
    INCREMENTAL = "INCREMENTAL"
    DEMAND = "DEMAND"


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ScrapeJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    source: Source
    job_type: JobType
    status: JobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    last_cursor: Optional[str] = None
    products_scraped: int = 0
    products_updated: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


class ScrapeConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: Source = Field(..., alias="_id")
    last_incremental_sync: Optional[datetime] = None
    total_products: int = 0


class SearchDemand(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., alias="_id")
    hit_count: int = 0
    scrape_attempted: bool = False
    scrape_found_results: bool = False
    last_searched: Optional[datetime] = None


class ScrapeResult(BaseModel):
    products_processed: int = 0
    products_upserted: int = 0
    products_skipped: int = 0
    errors: int = 0
    next_cursor: Optional[str] = None


class RateLimitConfig(BaseModel):
    requests_per_second: float
    delay_seconds: float


RATE_LIMITS = {
    Source.OPEN_FOOD_FACTS: RateLimitConfig(requests_per_second=5, delay_seconds=0.2),
    Source.USDA: RateLimitConfig(requests_per_second=10, delay_seconds=0.1),
    Source.MANUAL: RateLimitConfig(requests_per_second=100, delay_seconds=0.01),
}


@dataclass
class ListingPage:
    """One page of raw upstream records from a bulk listing."""

    items: List[Dict[str, Any]]
    exhausted: bool = False


@dataclass(frozen=True)
class ScraperVariant:
    """
    Everything provider-specific about crawling one source.

    Attributes:
        source: The provider this variant crawls
        rate_limit: Minimum spacing of outbound requests
        is_configured: Returns False when a required credential is missing
        fetch_page: ``(scraper, page_number) -> ListingPage`` for bulk listing
        search: ``(scraper, query) -> list[dict]`` raw records matching a query
        is_valid: Raw record has a name and a resolvable energy value
        normalize: Raw record -> NormalizedProduct
    """

    source: Source
    rate_limit: RateLimitConfig
    is_configured: Callable[[], bool]
    fetch_page: Callable[[Any, int], Awaitable[ListingPage]]
    search: Callable[[Any, str], Awaitable[List[Dict[str, Any]]]]
    is_valid: Callable[[Dict[str, Any]], bool]
    normalize: Callable[[Dict[str, Any]], NormalizedProduct]
