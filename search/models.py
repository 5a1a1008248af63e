# search/models.py
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from providers.models import NormalizedProduct

PENDING = "pending"


class QueryKind(str, Enum):
    WHOLE_FOOD = "WHOLE_FOOD"
    BRANDED = "BRANDED"
    UNKNOWN = "UNKNOWN"


class QueryClassification(BaseModel):
    kind: QueryKind
    is_explicit_brand_search: bool = False


class TranslationInfo(BaseModel):
    original_query: str
    translated_query: str
    detected_language: str
    from_cache: bool = False


class NormalizedQuery(BaseModel):
    search_text: str
    translation_info: Optional[TranslationInfo] = None


class SourceStatus(BaseModel):
    """Per-provider slot of a search result; ``count`` is "pending" for a lost race."""

    count: Union[int, Literal["pending"]] = 0
    error: Optional[str] = None


class SearchResult(BaseModel):
    products: List[NormalizedProduct] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 20
    has_more: bool = False
    sources: Dict[str, SourceStatus] = Field(default_factory=dict)
    translation_info: Optional[TranslationInfo] = None
    from_cache: bool = False


class CachedSearch(BaseModel):
    """
    Payload stored in and returned by the result cache.

    ``page_size`` is the page size the row was written with; a request for a
    larger page cannot be answered from it unless the row already holds
    every hit.
    """

    products: List[NormalizedProduct] = Field(default_factory=list)
    total_count: int = 0
    sources: Dict[str, SourceStatus] = Field(default_factory=dict)
    page_size: int = 0

    def covers(self, page_size: int) -> bool:
        return self.page_size >= page_size or len(self.products) >= self.total_count
