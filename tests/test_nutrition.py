# tests/test_nutrition.py
import pytest

from providers import openfoodfacts as off
from providers import usda
from providers.nutrition import kj_to_kcal, quality_score, resolve_energy


def test_kcal_per_100g_wins_over_everything():
    nutriments = {"energy-kcal_100g": 250, "energy-kcal": 120, "energy-kj_100g": 2000}
    assert off.resolve_energy_kcal({"nutriments": nutriments}) == 250


def test_zero_kcal_falls_through_to_next_key():
    nutriments = {"energy-kcal_100g": 0, "energy-kcal": 180}
    assert off.resolve_energy_kcal({"nutriments": nutriments}) == 180


def test_kj_converted_when_no_kcal():
    nutriments = {"energy-kj_100g": 1046}
    assert off.resolve_energy_kcal({"nutriments": nutriments}) == 250


def test_generic_energy_treated_as_kj():
    nutriments = {"energy_100g": "418.4"}
    assert off.resolve_energy_kcal({"nutriments": nutriments}) == 100


def test_no_energy_defaults_to_zero():
    assert resolve_energy({}, ["a"], ["b"]) == 0
    assert resolve_energy({"a": "n/a", "b": -5}, ["a"], ["b"]) == 0


@pytest.mark.parametrize("kj,kcal", [(418.4, 100), (4.184, 1), (0, 0), (2092, 500)])
def test_kj_to_kcal(kj, kcal):
    assert kj_to_kcal(kj) == kcal


def test_usda_energy_resolution_across_payload_shapes():
    search_shape = {"foodNutrients": [{"nutrientNumber": "208", "value": 143}]}
    list_shape = {"foodNutrients": [{"number": "957", "amount": 150}]}
    detail_shape = {"foodNutrients": [{"nutrient": {"number": "268"}, "amount": 598}]}

    assert usda.resolve_energy_kcal(search_shape) == 143
    assert usda.resolve_energy_kcal(list_shape) == 150
    assert usda.resolve_energy_kcal(detail_shape) == 143


def test_quality_score_full_and_empty(product):
    full = product(
        "off", "1", name="Oat bar", calories=400,
        protein_per_100g=10, carbs_per_100g=60, fat_per_100g=12,
        fiber_per_100g=7, image_url="http://img/1.jpg",
    )
    assert quality_score(full) == 100

    bare = product("usda", "2", name="Ab", calories=0)
    assert quality_score(bare) == 0


def test_quality_score_partial(product):
    p = product("usda", "3", name="Egg, whole, raw", calories=143, protein_per_100g=12.6, fat_per_100g=9.5)
    # name 10 + energy 20 + protein 15 + fat 15
    assert quality_score(p) == 60


def test_usda_normalize_converts_sodium_to_grams():
    food = {
        "fdcId": 171287,
        "description": "Egg, whole, raw, fresh",
        "dataType": "SR Legacy",
        "foodNutrients": [
            {"nutrientNumber": "208", "value": 143},
            {"nutrientNumber": "203", "value": 12.56},
            {"nutrientNumber": "307", "value": 142},
        ],
    }
    p = usda.normalize_food(food)
    assert p.id == "usda_171287"
    assert p.sodium_per_100g == pytest.approx(0.142)
    assert p.is_whole_food is True
    assert p.brand is None


def test_off_normalize_blank_brand_is_none():
    p = off.normalize_product(
        {"code": "123", "product_name": "Eggs", "brands": "  ", "nutriments": {"energy-kcal_100g": 140}}
    )
    assert p.id == "off_123"
    assert p.brand is None
    assert p.calories_per_100g == 140
