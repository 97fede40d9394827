from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.contracts.errors import PersistenceFailure
from backend.src.contracts.models import TrackedProduct, TrackingSubscription


class CatalogRepository:
    """ICatalogStore over the relational catalog.

    Write methods commit, so every save is durable on its own and a later
    failure in the same cycle does not roll it back.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_all_products(self) -> list[TrackedProduct]:
        stmt = select(TrackedProduct).order_by(TrackedProduct.created_at)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Loading tracked products failed: {exc}") from exc
        return list(result.scalars().all())

    async def save_products(self, products: list[TrackedProduct]) -> None:
        await self._save(products, "products")

    async def find_subscriptions_by_product_ids(
        self, product_ids: list[uuid.UUID]
    ) -> list[TrackingSubscription]:
        if not product_ids:
            return []
        stmt = select(TrackingSubscription).where(
            TrackingSubscription.product_id.in_(product_ids)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Loading subscriptions failed: {exc}") from exc
        return list(result.scalars().all())

    async def save_subscriptions(self, subscriptions: list[TrackingSubscription]) -> None:
        await self._save(subscriptions, "subscriptions")

    async def _save(self, rows: list[TrackedProduct] | list[TrackingSubscription], what: str) -> None:
        if not rows:
            return
        try:
            self._session.add_all(rows)
            await self._session.commit()
        except SQLAlchemyError as exc:
            # Detach first so rows loaded earlier in the cycle stay readable
            # instead of being expired by the rollback.
            self._session.expunge_all()
            await self._session.rollback()
            raise PersistenceFailure(f"Saving {len(rows)} {what} failed: {exc}") from exc
