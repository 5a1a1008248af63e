# providers/models.py
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Source(str, Enum):
    USDA = "usda"
    OPEN_FOOD_FACTS = "off"
    MANUAL = "manual"


def product_id(source, external_id):
    """Deterministic catalog id, e.g. ``usda_171287`` or ``off_3017620422003``."""
    return f"{Source(source).value}_{external_id}"


class NormalizedProduct(BaseModel):
    """
    Provider-independent food record.

    Every adapter maps its own payload into this shape. Nutrient values are
    per 100 g, never negative, and 0 when the provider does not report them.
    Sodium is expressed in grams.
    """

    id: str = Field(..., description="Deterministic id '{source}_{external_id}'")
    source: Source
    external_id: str
    name: str
    brand: Optional[str] = None
    image_url: Optional[str] = None
    barcode: Optional[str] = None
    fdc_id: Optional[int] = None
    calories_per_100g: float = Field(0, ge=0)
    protein_per_100g: float = Field(0, ge=0)
    carbs_per_100g: float = Field(0, ge=0)
    fat_per_100g: float = Field(0, ge=0)
    fiber_per_100g: float = Field(0, ge=0)
    sugar_per_100g: float = Field(0, ge=0)
    sodium_per_100g: float = Field(0, ge=0)
    serving_size: float = 100
    serving_unit: str = "g"
    serving_size_text: str = "100g"
    categories: List[str] = Field(default_factory=list)
    is_whole_food: bool = False

    @model_validator(mode="before")
    @classmethod
    def fill_id(cls, data):
        if isinstance(data, dict) and not data.get("id"):
            if data.get("source") is not None and data.get("external_id") is not None:
                data = dict(data)
                data["id"] = product_id(data["source"], data["external_id"])
        return data

    @field_validator("brand", "image_url", "barcode", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("external_id", mode="before")
    @classmethod
    def external_id_as_str(cls, v):
        return str(v) if v is not None else v


class ProviderPage(BaseModel):
    """One page of normalized search hits plus the provider's own hit count."""

    items: List[NormalizedProduct] = Field(default_factory=list)
    total: int = 0
