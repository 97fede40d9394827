from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.contracts.errors import PersistenceFailure
from backend.src.contracts.models import PriceHistoryRecord


class PriceHistoryRepository:
    """Append-only price time series. Rows are never updated or deleted here."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_many(self, records: list[PriceHistoryRecord]) -> None:
        if not records:
            return
        try:
            self._session.add_all(records)
            await self._session.commit()
        except SQLAlchemyError as exc:
            self._session.expunge_all()
            await self._session.rollback()
            raise PersistenceFailure(
                f"Appending {len(records)} price history records failed: {exc}"
            ) from exc
