# utils/helpers.py
import asyncio
import hashlib
import time

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from .errors import UpstreamUnavailable


def normalize_query(query):
    """Lower-case and trim a search query."""
    return (query or "").strip().lower()


def query_hash(query):
    """
    Generate a deterministic SHA-256 hash for a search query.

    The query is trimmed and lower-cased first, so "Egg ", "egg" and "EGG"
    share one cache row.

    Args:
        query (str): Raw or translated search text

    Returns:
        str: Hexadecimal SHA-256 digest (64 characters)
    """
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for transient upstream failures.

    Only UpstreamUnavailable is retried: a NotFound answer is final and is
    raised to the caller straight away.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of attempts. Defaults to 3.
            - max_wait (float): Upper bound of the backoff in seconds. Defaults to 10.

    Returns:
        Callable: Configured retry decorator

    Example:
        @network_retry(attempts=2)
        async def lookup(code):
            ...
    """
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", 3)),
        wait=wait_exponential(
            multiplier=tenacity_kwargs.get("multiplier", 1),
            min=tenacity_kwargs.get("min_wait", 1),
            max=tenacity_kwargs.get("max_wait", 10),
        ),
        retry=retry_if_exception_type(UpstreamUnavailable),
        reraise=True,
    )


class RateLimiter:
    """
    Minimum-delay gate owned by exactly one scraper instance.

    Holds the time of the last outbound request and sleeps the remainder of
    ``min_interval`` before letting the next one through. Instances are never
    shared, so two scrapers always throttle independently.
    """

    def __init__(self, min_interval, clock=time.monotonic, sleep=asyncio.sleep):
        self.min_interval = min_interval
        self.last_request_at = None
        self._clock = clock
        self._sleep = sleep

    async def wait(self):
        """Sleep until ``min_interval`` has passed since the previous call."""
        if self.last_request_at is not None:
            elapsed = self._clock() - self.last_request_at
            if elapsed < self.min_interval:
                await self._sleep(self.min_interval - elapsed)
        self.last_request_at = self._clock()
