from __future__ import annotations

import structlog

from backend.src.contracts.models import PriceObservation, SnapshotEntry

logger = structlog.get_logger(__name__)


class SnapshotDiffer:
    """Compare a fresh observation with its cached snapshot.

    A product is changed when it has no snapshot yet, or when its price or
    sold-out flag differs from the snapshot. Name and image changes are not
    price changes and are handled as metadata drift by the engine.
    """

    def diff(
        self, observation: PriceObservation, cached: SnapshotEntry | None
    ) -> SnapshotEntry | None:
        """Return the snapshot to store, or None when nothing changed."""
        price = observation.product_price

        if cached is None:
            logger.info(
                "snapshot_created",
                product_id=str(observation.product_id),
                price=price,
                is_sold_out=observation.is_sold_out,
            )
            return SnapshotEntry(
                price=price,
                is_sold_out=observation.is_sold_out,
                lowest_price_ever=price,
            )

        if cached.price == price and cached.is_sold_out == observation.is_sold_out:
            return None

        logger.info(
            "snapshot_changed",
            product_id=str(observation.product_id),
            old_price=cached.price,
            new_price=price,
            was_sold_out=cached.is_sold_out,
            is_sold_out=observation.is_sold_out,
        )
        return SnapshotEntry(
            price=price,
            is_sold_out=observation.is_sold_out,
            lowest_price_ever=min(cached.lowest_price_ever, price),
        )
