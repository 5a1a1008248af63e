# utils/errors.py
from typing import Any, Optional


class FoodDataError(Exception):
    """Base class for every error raised by the federation and crawl pipeline."""

    def __init__(
        self,
        message: str,
        error_code: str = "FOOD_DATA_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class UpstreamUnavailable(FoodDataError):
    """A provider could not be reached or answered with a non-2xx status."""

    def __init__(
        self,
        source: str,
        reason: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.source = source
        self.status_code = status_code
        super().__init__(
            f"{source} unavailable: {reason}",
            "UPSTREAM_UNAVAILABLE",
            details or {"source": source, "status_code": status_code},
        )


class NotFound(FoodDataError):
    """Single item lookup (barcode or id) with no match upstream."""

    def __init__(self, source: str, key: str):
        self.source = source
        self.key = key
        super().__init__(
            f"No {source} item found for {key!r}",
            "NOT_FOUND",
            {"source": source, "key": key},
        )


class ConfigurationMissing(FoodDataError):
    """A credential or setting required by an optional feature is absent."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(
            f"{setting} is not configured", "CONFIGURATION_MISSING", {"setting": setting}
        )


class ScrapeItemInvalid(FoodDataError):
    """A scraped record lacks a name or a resolvable energy value."""

    def __init__(self, source: str, external_id: Optional[str], reason: str):
        super().__init__(
            f"Invalid {source} item {external_id}: {reason}",
            "SCRAPE_ITEM_INVALID",
            {"source": source, "external_id": external_id, "reason": reason},
        )


class ScrapeBatchFailed(FoodDataError):
    """An uncaught error ended a scrape run; the job is recorded as FAILED."""

    def __init__(self, source: str, job_id: Optional[str], reason: str):
        self.source = source
        self.job_id = job_id
        super().__init__(
            f"{source} scrape job {job_id} failed: {reason}",
            "SCRAPE_BATCH_FAILED",
            {"source": source, "job_id": job_id},
        )
