from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

import structlog

from backend.src.config import Settings
from backend.src.contracts.errors import CacheUnavailable, PersistenceFailure
from backend.src.contracts.interfaces import (
    ICatalogStore,
    IPriceFetcher,
    IPriceHistoryStore,
    IProductMetadataListener,
    ISnapshotCache,
)
from backend.src.contracts.models import (
    CycleReport,
    PriceHistoryRecord,
    PriceObservation,
    SnapshotEntry,
    TrackedProduct,
)
from backend.src.differ.differ import SnapshotDiffer
from backend.src.notifier.dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)


class ReconciliationEngine:
    """Run one price check cycle: fetch, diff, persist, match, notify.

    Callers must not run two cycles at once over the same catalog; the
    scheduler guarantees this. Per-product fetch failures are isolated.
    ``CacheUnavailable`` aborts the cycle. Snapshots already written for
    products whose alerts were not dispatched are put back to their
    pre-cycle value, so the next cycle sees those products as changed.
    """

    def __init__(
        self,
        fetcher: IPriceFetcher,
        cache: ISnapshotCache,
        catalog: ICatalogStore,
        history: IPriceHistoryStore,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        metadata_listener: IProductMetadataListener | None = None,
        differ: SnapshotDiffer | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._catalog = catalog
        self._history = history
        self._dispatcher = dispatcher
        self._settings = settings
        self._metadata_listener = metadata_listener
        self._differ = differ or SnapshotDiffer()

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(cycle_id=uuid.uuid4().hex[:12])
        log = logger.bind(cycle_id=report.cycle_id)
        log.info("price_cycle_start")

        # 1. Catalog
        products = await self._catalog.find_all_products()
        report.products_total = len(products)
        if not products:
            log.info("no_products_tracked")
            report.finished_at = datetime.now(tz=timezone.utc)
            return report

        # 2. Bounded fan-out to the fetch gateway
        observations = await self._fetch_all(products)
        report.fetch_failures = len(products) - len(observations)
        log.info(
            "prices_fetched",
            fetched=len(observations),
            failed=report.fetch_failures,
        )

        # 3-4. Diff against the snapshot cache, writing changed entries
        written = await self._detect_changes(observations, log)
        changed = [observation for observation, _ in written]
        report.changed = len(changed)
        log.info("changes_detected", count=len(changed))

        if changed:
            # 5. Price history
            history_ok = await self._append_history(changed, log)
            if history_ok:
                report.history_written = len(changed)

            # 6-7. Notify for in-stock products only
            candidates = [o for o in changed if not o.is_sold_out]
            report.notification_candidates = len(candidates)
            if candidates and (history_ok or self._settings.notify_on_history_failure):
                if not history_ok:
                    log.warning(
                        "history_consistency_warning",
                        detail="dispatching alerts without a durable price history record",
                        product_ids=[str(c.product_id) for c in candidates],
                    )
                try:
                    report.notifications_sent = await self._dispatcher.dispatch(candidates)
                except PersistenceFailure as exc:
                    log.error("notification_dispatch_failed", error=str(exc))
                except CacheUnavailable as exc:
                    log.error(
                        "notification_dispatch_interrupted",
                        product_ids=[str(c.product_id) for c in candidates],
                        error=str(exc),
                    )
                    pending = {c.product_id for c in candidates}
                    await self._restore_snapshots(
                        [(o, prev) for o, prev in written if o.product_id in pending], log
                    )
                    raise
            elif candidates:
                log.warning(
                    "dispatch_skipped_after_history_failure",
                    candidates=len(candidates),
                )

        # 8. Metadata drift
        report.metadata_updated = await self._sync_metadata(products, observations, log)

        report.finished_at = datetime.now(tz=timezone.utc)
        log.info(
            "price_cycle_complete",
            changed=report.changed,
            notifications_sent=report.notifications_sent,
            metadata_updated=report.metadata_updated,
        )
        return report

    async def _fetch_all(self, products: list[TrackedProduct]) -> list[PriceObservation]:
        semaphore = asyncio.Semaphore(self._settings.fetch_max_concurrency)

        async def fetch_one(product: TrackedProduct) -> PriceObservation | None:
            async with semaphore:
                try:
                    info = await asyncio.wait_for(
                        self._fetcher.fetch(product.shop, product.product_code),
                        timeout=self._settings.fetch_timeout_seconds,
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "price_fetch_failed",
                        product_id=str(product.id),
                        shop=product.shop,
                        product_code=product.product_code,
                        error=str(exc) or type(exc).__name__,
                    )
                    return None
            return PriceObservation(
                product_id=product.id,
                product_price=info.price,
                is_sold_out=info.is_sold_out,
                product_name=info.name,
                image_url=info.image_url,
                shop=product.shop,
                product_code=product.product_code,
            )

        results = await asyncio.gather(*(fetch_one(p) for p in products))
        return [r for r in results if r is not None]

    async def _detect_changes(
        self, observations: list[PriceObservation], log: structlog.stdlib.BoundLogger
    ) -> list[tuple[PriceObservation, SnapshotEntry | None]]:
        """Return each changed observation with the snapshot it replaced."""
        if not observations:
            return []

        cached_entries = await self._cache.get_snapshots([o.product_id for o in observations])

        async def diff_one(
            observation: PriceObservation, cached: SnapshotEntry | None
        ) -> tuple[PriceObservation, SnapshotEntry | None] | None:
            entry = self._differ.diff(observation, cached)
            if entry is None:
                return None
            await self._cache.set_snapshot(observation.product_id, entry)
            return observation, cached

        results = await asyncio.gather(
            *(diff_one(o, c) for o, c in zip(observations, cached_entries)),
            return_exceptions=True,
        )
        written = [r for r in results if isinstance(r, tuple)]
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            # Leave no partial cycle behind in the cache.
            await self._restore_snapshots(written, log)
            raise errors[0]
        return written

    async def _restore_snapshots(
        self,
        written: list[tuple[PriceObservation, SnapshotEntry | None]],
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        restored = 0
        for observation, previous in written:
            try:
                if previous is None:
                    await self._cache.delete_snapshot(observation.product_id)
                else:
                    await self._cache.set_snapshot(observation.product_id, previous)
                restored += 1
            except CacheUnavailable as exc:
                log.error(
                    "snapshot_restore_failed",
                    product_id=str(observation.product_id),
                    error=str(exc),
                )
        if written:
            log.warning("snapshots_restored", restored=restored, attempted=len(written))

    async def _append_history(
        self, changed: list[PriceObservation], log: structlog.stdlib.BoundLogger
    ) -> bool:
        observed_at = datetime.now(tz=timezone.utc)
        records = [
            PriceHistoryRecord(
                product_id=o.product_id,
                price=o.product_price,
                is_sold_out=o.is_sold_out,
                observed_at=observed_at,
            )
            for o in changed
        ]
        try:
            await self._history.insert_many(records)
        except PersistenceFailure as exc:
            log.error("price_history_write_failed", count=len(records), error=str(exc))
            return False
        return True

    async def _sync_metadata(
        self,
        products: list[TrackedProduct],
        observations: list[PriceObservation],
        log: structlog.stdlib.BoundLogger,
    ) -> int:
        fetched_by_id = {o.product_id: o for o in observations}

        drifted: list[TrackedProduct] = []
        for product in products:
            fresh = fetched_by_id.get(product.id)
            if fresh is None:
                continue
            if product.product_name != fresh.product_name or product.image_url != fresh.image_url:
                product.product_name = fresh.product_name
                product.image_url = fresh.image_url
                drifted.append(product)

        if not drifted:
            return 0

        try:
            await self._catalog.save_products(drifted)
        except PersistenceFailure as exc:
            log.error("product_metadata_save_failed", count=len(drifted), error=str(exc))
            return 0

        if self._metadata_listener is not None:
            try:
                await self._metadata_listener.on_products_metadata_changed(drifted)
            except Exception as exc:  # noqa: BLE001
                log.error("product_metadata_propagation_failed", error=str(exc))

        log.info("product_metadata_updated", count=len(drifted))
        return len(drifted)
