# providers/usda.py
import os

from dotenv import load_dotenv

from utils.errors import ConfigurationMissing
from .base import ProviderClient, PROVIDER_TIMEOUT
from .models import NormalizedProduct, ProviderPage, Source
from .nutrition import non_negative, resolve_energy

load_dotenv()
USDA_BASE_URL = os.getenv("USDA_BASE_URL", "https://api.nal.usda.gov/fdc/v1")
USDA_API_KEY = os.getenv("USDA_API_KEY")

# Foundation and SR Legacy are the whole/fresh food data types
WHOLE_FOOD_DATA_TYPES = ["Foundation", "SR Legacy"]

# USDA nutrient numbers
ENERGY_KCAL = "208"
ENERGY_ATWATER_GENERAL = "957"
ENERGY_ATWATER_SPECIFIC = "958"
ENERGY_KJ = "268"
PROTEIN = "203"
FAT = "204"
CARBS = "205"
FIBER = "291"
SUGAR = "269"
SODIUM = "307"

ENERGY_KCAL_KEYS = [ENERGY_KCAL, ENERGY_ATWATER_GENERAL, ENERGY_ATWATER_SPECIFIC]
ENERGY_KJ_KEYS = [ENERGY_KJ]


def nutrient_values(food):
    """
    Flatten a USDA ``foodNutrients`` list into ``{nutrient_number: value}``.

    Handles the three shapes the API returns: search results
    (``nutrientNumber``/``value``), abridged list results (``number``/
    ``amount``) and full detail records (``nutrient.number``/``amount``).
    """
    values = {}
    for n in food.get("foodNutrients") or []:
        if not isinstance(n, dict):
            continue
        nested = n.get("nutrient") or {}
        number = n.get("nutrientNumber") or n.get("number") or nested.get("number")
        value = n.get("value", n.get("amount"))
        if number is None or value is None:
            continue
        values.setdefault(str(number), value)
    return values


def resolve_energy_kcal(food):
    return resolve_energy(nutrient_values(food), ENERGY_KCAL_KEYS, ENERGY_KJ_KEYS)


def has_valid_nutrition(food):
    """A USDA record is usable when it has a description and positive energy."""
    if not (food.get("description") or "").strip():
        return False
    return resolve_energy_kcal(food) > 0


def normalize_food(food):
    """
    Map a USDA food record to a NormalizedProduct.

    Args:
        food (dict): Record from ``/foods/search``, ``/foods/list`` or ``/food/{id}``

    Returns:
        NormalizedProduct: ``usda_{fdcId}`` product; sodium converted from mg to g

    Note:
        USDA publishes no product images. Records of the Foundation and SR
        Legacy data types are flagged as whole foods.
    """
    values = nutrient_values(food)
    serving_size = non_negative(food.get("servingSize"))
    serving_unit = food.get("servingSizeUnit") or "g"
    category = food.get("foodCategory")
    if isinstance(category, dict):
        category = category.get("description")

    return NormalizedProduct(
        source=Source.USDA,
        external_id=food["fdcId"],
        fdc_id=food["fdcId"],
        name=(food.get("description") or "Unknown").strip(),
        brand=food.get("brandOwner") or food.get("brandName"),
        image_url=None,
        calories_per_100g=resolve_energy(values, ENERGY_KCAL_KEYS, ENERGY_KJ_KEYS),
        protein_per_100g=non_negative(values.get(PROTEIN)),
        carbs_per_100g=non_negative(values.get(CARBS)),
        fat_per_100g=non_negative(values.get(FAT)),
        fiber_per_100g=non_negative(values.get(FIBER)),
        sugar_per_100g=non_negative(values.get(SUGAR)),
        sodium_per_100g=non_negative(values.get(SODIUM)) / 1000,
        serving_size=serving_size or 100,
        serving_unit=serving_unit,
        serving_size_text=(
            f"{serving_size:g}{serving_unit}" if serving_size else "100g"
        ),
        categories=[category.lower()] if category else [],
        is_whole_food=food.get("dataType") in WHOLE_FOOD_DATA_TYPES,
    )


class UsdaClient(ProviderClient):
    """Provider A adapter: USDA FoodData Central."""

    source = Source.USDA.value

    def __init__(
        self, api_key=USDA_API_KEY, base_url=USDA_BASE_URL, timeout=PROVIDER_TIMEOUT, client=None
    ):
        super().__init__(base_url, timeout=timeout, client=client)
        self.api_key = api_key

    def _key(self):
        if not self.api_key:
            raise ConfigurationMissing("USDA_API_KEY")
        return self.api_key

    async def search(self, query, page=1, page_size=10):
        """
        Search whole foods by free text.

        Args:
            query (str): Search text (already translated)
            page (int): 1-based page number
            page_size (int): Items requested from USDA

        Returns:
            ProviderPage: Normalized items and USDA's ``totalHits``

        Raises:
            ConfigurationMissing: USDA_API_KEY is not set
            UpstreamUnavailable: transport or HTTP failure
        """
        data = await self.request_json(
            "POST",
            "/foods/search",
            params={"api_key": self._key()},
            json={
                "query": query,
                "dataType": WHOLE_FOOD_DATA_TYPES,
                "pageSize": page_size,
                "pageNumber": page,
                "sortBy": "dataType.keyword",
                "sortOrder": "asc",
            },
        )
        foods = data.get("foods") or []
        return ProviderPage(
            items=[normalize_food(f) for f in foods if f.get("fdcId") is not None],
            total=int(data.get("totalHits") or 0),
        )

    async def get_food(self, fdc_id):
        """Fetch one food by FDC id; raises NotFound for unknown ids."""
        data = await self.request_json(
            "GET",
            f"/food/{fdc_id}",
            not_found_key=str(fdc_id),
            params={"api_key": self._key()},
        )
        return normalize_food(data)
