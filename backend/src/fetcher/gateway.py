from __future__ import annotations

import asyncio
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from backend.src.config import Settings
from backend.src.contracts.errors import FetchFailure
from backend.src.contracts.models import FetchedPrice

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_BACKOFF_BASE_SECONDS: float = 0.5


class HttpPriceFetcher:
    """IPriceFetcher backed by the shop adapter service.

    The adapter service owns the shop-specific scraping. It exposes
    ``GET /products/{shop}/{product_code}`` returning
    ``{"price", "is_sold_out", "name", "image_url"}``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.fetch_gateway_url,
            headers={"Accept": "application/json"},
            follow_redirects=True,
            timeout=httpx.Timeout(self._settings.fetch_attempt_timeout_seconds),
        )

    async def fetch(self, shop: str, product_code: str) -> FetchedPrice:
        """Fetch current price info with retries and exponential backoff."""
        path = f"/products/{quote(shop, safe='')}/{quote(product_code, safe='')}"
        max_retries = self._settings.fetch_max_retries
        last_error: Exception | None = None

        for attempt in range(1, max_retries + 1):
            log = logger.bind(shop=shop, product_code=product_code, attempt=attempt)
            try:
                async with self._build_client() as client:
                    response = await client.get(path)
                    if response.status_code == 404:
                        raise FetchFailure(shop, product_code, "product not found")
                    response.raise_for_status()
                    info = FetchedPrice.model_validate(response.json())
                    log.debug("price_fetched", price=info.price, is_sold_out=info.is_sold_out)
                    return info
            except (httpx.HTTPStatusError, httpx.RequestError) as exc:
                last_error = exc
                backoff = _BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
                log.warning("fetch_retry", error=str(exc), backoff_seconds=backoff)
                if attempt < max_retries:
                    await asyncio.sleep(backoff)
            except (ValidationError, ValueError) as exc:
                # A malformed payload will not improve on retry.
                raise FetchFailure(shop, product_code, f"invalid payload: {exc}") from exc

        raise FetchFailure(
            shop, product_code, f"gave up after {max_retries} attempts"
        ) from last_error
