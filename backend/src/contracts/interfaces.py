from __future__ import annotations

import uuid
from typing import Protocol

from backend.src.contracts.models import (
    FetchedPrice,
    PriceHistoryRecord,
    PushMessage,
    SendResult,
    SnapshotEntry,
    TrackedProduct,
    TrackingSubscription,
)


class IPriceFetcher(Protocol):
    async def fetch(self, shop: str, product_code: str) -> FetchedPrice: ...


class ISnapshotCache(Protocol):
    async def get_snapshots(
        self, product_ids: list[uuid.UUID]
    ) -> list[SnapshotEntry | None]: ...

    async def set_snapshot(self, product_id: uuid.UUID, entry: SnapshotEntry) -> None: ...

    async def delete_snapshot(self, product_id: uuid.UUID) -> None: ...

    async def get_push_token(self, user_id: uuid.UUID) -> str | None: ...


class IPriceHistoryStore(Protocol):
    async def insert_many(self, records: list[PriceHistoryRecord]) -> None: ...


class ICatalogStore(Protocol):
    async def find_all_products(self) -> list[TrackedProduct]: ...

    async def save_products(self, products: list[TrackedProduct]) -> None: ...

    async def find_subscriptions_by_product_ids(
        self, product_ids: list[uuid.UUID]
    ) -> list[TrackingSubscription]: ...

    async def save_subscriptions(self, subscriptions: list[TrackingSubscription]) -> None: ...


class IPushProvider(Protocol):
    async def send_batch(self, messages: list[PushMessage]) -> list[SendResult]: ...


class IProductMetadataListener(Protocol):
    async def on_products_metadata_changed(self, products: list[TrackedProduct]) -> None: ...
