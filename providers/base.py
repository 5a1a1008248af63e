# providers/base.py
import logging
import os

from dotenv import load_dotenv
from httpx import AsyncClient, HTTPError

from utils.errors import NotFound, UpstreamUnavailable

load_dotenv()
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
USER_AGENT = os.getenv("OPEN_FOOD_FACTS_USER_AGENT", "FoodFederation/1.0")

logger = logging.getLogger("providers")


class ProviderClient:
    """
    Shared transport for the provider adapters.

    Owns one httpx AsyncClient and maps transport failures onto the error
    hierarchy: network errors and non-2xx answers become UpstreamUnavailable,
    a 404 on a single-item lookup becomes NotFound.
    """

    source = None

    def __init__(self, base_url, timeout=PROVIDER_TIMEOUT, client=None):
        self.base_url = base_url.rstrip("/")
        self.client = client or AsyncClient(
            timeout=timeout, headers={"User-Agent": USER_AGENT}
        )

    async def close(self):
        await self.client.aclose()

    async def request_json(self, method, path, not_found_key=None, **kwargs):
        """
        Perform one request against the provider and decode its JSON body.

        Args:
            method (str): HTTP method
            path (str): Path relative to ``base_url``
            not_found_key (str, optional): When set, a 404 raises NotFound
                for this key instead of UpstreamUnavailable
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Returns:
            Any: Decoded JSON payload

        Raises:
            NotFound: 404 on a lookup with ``not_found_key``
            UpstreamUnavailable: network error, non-2xx status or invalid JSON
        """
        url = f"{self.base_url}{path}"
        try:
            resp = await self.client.request(method, url, **kwargs)
        except HTTPError as e:
            raise UpstreamUnavailable(self.source, f"{type(e).__name__}: {e}") from e

        if resp.status_code == 404 and not_found_key is not None:
            raise NotFound(self.source, not_found_key)
        if resp.is_error:
            raise UpstreamUnavailable(
                self.source,
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(self.source, "invalid JSON payload") from e
