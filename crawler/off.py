# crawler/off.py
import math

from providers import openfoodfacts as off
from providers.models import Source
from .models import RATE_LIMITS, ListingPage, ScraperVariant

PAGE_SIZE = 100
QUERY_PAGE_SIZE = 50


def is_configured():
    return True


async def fetch_page(scraper, page):
    """
    Fetch one page of Open Food Facts products that carry nutrition data.

    Pages are ordered by ascending creation time (``created_t``). Unlike the
    popularity sort, creation time never changes for a product and new
    products land at the end, so resuming from a page number picks them up
    later. Products deleted upstream shift later rows back by one position
    each, so a resumed crawl can skip the rows that moved onto pages it
    already finished.
    """
    resp = await scraper.rate_limited_fetch(
        "GET",
        f"{off.OFF_BASE_URL}{off.SEARCH_PATH}",
        params=off.search_params(
            page=page,
            page_size=PAGE_SIZE,
            sort_by="created_t",
            tagtype_0="nutrition_grades_tags",
            tag_contains_0="contains",
            tag_0="-",
        ),
    )
    data = resp.json()
    products = data.get("products") or []
    total_pages = math.ceil(int(data.get("count") or 0) / PAGE_SIZE)
    return ListingPage(items=products, exhausted=page >= total_pages)


async def search(scraper, query):
    resp = await scraper.rate_limited_fetch(
        "GET",
        f"{off.OFF_BASE_URL}{off.SEARCH_PATH}",
        params=off.search_params(query, page=1, page_size=QUERY_PAGE_SIZE),
    )
    return resp.json().get("products") or []


def is_valid(product):
    return bool(product.get("code")) and off.has_valid_nutrition(product)


OFF_VARIANT = ScraperVariant(
    source=Source.OPEN_FOOD_FACTS,
    rate_limit=RATE_LIMITS[Source.OPEN_FOOD_FACTS],
    is_configured=is_configured,
    fetch_page=fetch_page,
    search=search,
    is_valid=is_valid,
    normalize=off.normalize_product,
)
