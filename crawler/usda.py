# crawler/usda.py
import math
import os

from dotenv import load_dotenv

from providers import usda
from providers.models import Source
from .models import RATE_LIMITS, ListingPage, ScraperVariant

load_dotenv()
PAGE_SIZE = 200
QUERY_PAGE_SIZE = 50
# /foods/list reports no total; this is the approximate size of Foundation + SR Legacy
APPROX_TOTAL = int(os.getenv("USDA_APPROX_TOTAL", "50000"))


def api_key():
    return os.getenv("USDA_API_KEY") or usda.USDA_API_KEY


def is_configured():
    return bool(api_key())


def is_valid(food):
    return food.get("fdcId") is not None and usda.has_valid_nutrition(food)


async def fetch_page(scraper, page):
    """
    Fetch one page of the USDA bulk listing.

    The listing is sorted by ``fdcId`` ascending, so a page number points at
    the same slice between runs apart from newly published foods at the end.

    Returns:
        ListingPage: Raw foods; ``exhausted`` when the page came back short or
            the approximate total has been reached
    """
    resp = await scraper.rate_limited_fetch(
        "POST",
        f"{usda.USDA_BASE_URL}/foods/list",
        params={"api_key": api_key()},
        json={
            "dataType": usda.WHOLE_FOOD_DATA_TYPES,
            "pageSize": PAGE_SIZE,
            "pageNumber": page,
            "sortBy": "fdcId",
            "sortOrder": "asc",
        },
    )
    foods = resp.json()
    if not isinstance(foods, list):
        foods = []
    total_pages = math.ceil(APPROX_TOTAL / PAGE_SIZE)
    return ListingPage(
        items=foods, exhausted=len(foods) < PAGE_SIZE or page >= total_pages
    )


async def search(scraper, query):
    resp = await scraper.rate_limited_fetch(
        "POST",
        f"{usda.USDA_BASE_URL}/foods/search",
        params={"api_key": api_key()},
        json={
            "query": query,
            "dataType": usda.WHOLE_FOOD_DATA_TYPES,
            "pageSize": QUERY_PAGE_SIZE,
            "pageNumber": 1,
        },
    )
    return resp.json().get("foods") or []


USDA_VARIANT = ScraperVariant(
    source=Source.USDA,
    rate_limit=RATE_LIMITS[Source.USDA],
    is_configured=is_configured,
    fetch_page=fetch_page,
    search=search,
    is_valid=is_valid,
    normalize=usda.normalize_food,
)
