# providers/openfoodfacts.py
import os

from dotenv import load_dotenv

from utils.errors import NotFound
from .base import ProviderClient, PROVIDER_TIMEOUT
from .models import NormalizedProduct, ProviderPage, Source
from .nutrition import non_negative, resolve_energy

load_dotenv()
OFF_BASE_URL = os.getenv("OPEN_FOOD_FACTS_BASE_URL", "https://world.openfoodfacts.org")

SEARCH_PATH = "/cgi/search.pl"
PRODUCT_PATH = "/api/v2/product/{barcode}"

FIELDS = ",".join(
    [
        "code",
        "product_name",
        "product_name_en",
        "brands",
        "image_url",
        "image_small_url",
        "nutriments",
        "serving_size",
        "serving_quantity",
        "categories_tags",
    ]
)

ENERGY_KCAL_KEYS = ["energy-kcal_100g", "energy-kcal"]
# generic "energy" fields are reported in kJ
ENERGY_KJ_KEYS = ["energy-kj_100g", "energy-kj", "energy_100g", "energy"]


def product_name(product):
    return (product.get("product_name") or product.get("product_name_en") or "").strip()


def nutriments(product):
    n = product.get("nutriments")
    return n if isinstance(n, dict) else {}


def resolve_energy_kcal(product):
    return resolve_energy(nutriments(product), ENERGY_KCAL_KEYS, ENERGY_KJ_KEYS)


def has_valid_nutrition(product):
    """An Open Food Facts record is usable when it has a name and positive energy."""
    if not product_name(product):
        return False
    return resolve_energy_kcal(product) > 0


def normalize_product(product):
    """
    Map an Open Food Facts product to a NormalizedProduct.

    Args:
        product (dict): Product from the v1 search or the v2 product endpoint

    Returns:
        NormalizedProduct: ``off_{barcode}`` product with per-100g nutriments

    Note:
        ``brands`` is kept as the raw comma separated string. Products with a
        ``serving_quantity`` use the unit "serving".
    """
    n = nutriments(product)
    serving_quantity = non_negative(product.get("serving_quantity"))
    brand = (product.get("brands") or "").strip() or None
    categories = product.get("categories_tags") or []

    return NormalizedProduct(
        source=Source.OPEN_FOOD_FACTS,
        external_id=product["code"],
        barcode=product["code"],
        name=product_name(product) or "Unknown",
        brand=brand,
        image_url=product.get("image_small_url") or product.get("image_url"),
        calories_per_100g=resolve_energy(n, ENERGY_KCAL_KEYS, ENERGY_KJ_KEYS),
        protein_per_100g=non_negative(n.get("proteins_100g")),
        carbs_per_100g=non_negative(n.get("carbohydrates_100g")),
        fat_per_100g=non_negative(n.get("fat_100g")),
        fiber_per_100g=non_negative(n.get("fiber_100g")),
        sugar_per_100g=non_negative(n.get("sugars_100g")),
        sodium_per_100g=non_negative(n.get("sodium_100g")),
        serving_size=serving_quantity or 100,
        serving_unit="serving" if serving_quantity else "g",
        serving_size_text=product.get("serving_size") or "100g",
        categories=list(categories)[:10],
        is_whole_food=False,
    )


def search_params(query=None, page=1, page_size=20, **extra):
    params = {
        "action": "process",
        "json": "1",
        "page": str(page),
        "page_size": str(page_size),
        "fields": FIELDS,
    }
    if query is not None:
        params["search_terms"] = query
    params.update(extra)
    return params


class OpenFoodFactsClient(ProviderClient):
    """Provider B adapter: Open Food Facts."""

    source = Source.OPEN_FOOD_FACTS.value

    def __init__(self, base_url=OFF_BASE_URL, timeout=PROVIDER_TIMEOUT, client=None):
        super().__init__(base_url, timeout=timeout, client=client)

    async def search(self, query, page=1, page_size=10):
        """
        Full text product search (v1 API, the v2 API only filters).

        Returns:
            ProviderPage: Normalized items and the exact ``count`` reported by
                Open Food Facts

        Raises:
            UpstreamUnavailable: transport or HTTP failure
        """
        data = await self.request_json(
            "GET", SEARCH_PATH, params=search_params(query, page, page_size)
        )
        products = data.get("products") or []
        return ProviderPage(
            items=[normalize_product(p) for p in products if p.get("code")],
            total=int(data.get("count") or 0),
        )

    async def get_by_barcode(self, barcode):
        """
        Look up one product by barcode.

        Raises:
            NotFound: unknown barcode (HTTP 404 or ``status`` 0)
            UpstreamUnavailable: transport or HTTP failure
        """
        data = await self.request_json(
            "GET",
            PRODUCT_PATH.format(barcode=barcode),
            not_found_key=barcode,
            params={"fields": FIELDS},
        )
        product = data.get("product")
        if data.get("status") != 1 or not product:
            raise NotFound(self.source, barcode)
        product.setdefault("code", barcode)
        return normalize_product(product)
