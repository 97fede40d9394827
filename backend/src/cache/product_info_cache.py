from __future__ import annotations

import json
import uuid

import redis.asyncio as aioredis
import structlog

from backend.src.contracts.models import TrackedProduct

logger = structlog.get_logger(__name__)


def product_info_key(product_id: uuid.UUID) -> str:
    return f"product_info:{product_id}"


class RedisProductInfoCache:
    """Keeps the cached product cards served to clients in sync with the catalog.

    Implements IProductMetadataListener: the price check calls it with
    every product whose name or image changed upstream.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def on_products_metadata_changed(self, products: list[TrackedProduct]) -> None:
        if not products:
            return

        async with self._client.pipeline(transaction=False) as pipe:
            for product in products:
                pipe.set(
                    product_info_key(product.id),
                    json.dumps(
                        {
                            "id": str(product.id),
                            "shop": product.shop,
                            "product_code": product.product_code,
                            "product_name": product.product_name,
                            "image_url": product.image_url,
                        },
                        ensure_ascii=False,
                    ),
                )
            await pipe.execute()

        logger.info("product_info_cache_updated", count=len(products))
