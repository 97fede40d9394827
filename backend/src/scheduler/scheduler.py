from __future__ import annotations

import asyncio

import redis.asyncio as aioredis
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.src.cache.product_info_cache import RedisProductInfoCache
from backend.src.cache.snapshot_cache import RedisSnapshotCache
from backend.src.config import Settings
from backend.src.contracts.errors import PriceAlertError
from backend.src.contracts.interfaces import IPriceFetcher, IPushProvider
from backend.src.contracts.models import CycleReport
from backend.src.engine.reconciler import ReconciliationEngine
from backend.src.history.repository import PriceHistoryRepository
from backend.src.notifier.dispatcher import NotificationDispatcher
from backend.src.products.repository import CatalogRepository

logger = structlog.get_logger(__name__)


class PriceCheckScheduler:
    """Runs the price check cycle on a fixed interval, one cycle at a time."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: aioredis.Redis,
        fetcher: IPriceFetcher,
        push_provider: IPushProvider,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._cache = RedisSnapshotCache(redis_client)
        self._product_info_cache = RedisProductInfoCache(redis_client)
        self._fetcher = fetcher
        self._push_provider = push_provider
        self._scheduler = AsyncIOScheduler()
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        self._scheduler.add_job(
            self._scheduled_cycle,
            trigger=IntervalTrigger(minutes=self._settings.price_check_interval_minutes),
            id="price_check_cycle",
            name="Check tracked product prices and send alerts",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "scheduler_configured",
            interval_minutes=self._settings.price_check_interval_minutes,
        )

    def stop(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("scheduler_shutdown")

    async def trigger_now(self) -> CycleReport | None:
        """Run a cycle immediately. Returns None if one is already running."""
        return await self._run_cycle()

    async def _scheduled_cycle(self) -> None:
        try:
            await self._run_cycle()
        except PriceAlertError:
            logger.error("price_cycle_aborted", exc_info=True)
        except Exception:
            logger.error("price_cycle_error", exc_info=True)

    async def _run_cycle(self) -> CycleReport | None:
        if self._lock.locked():
            logger.warning("price_cycle_skipped", reason="previous cycle still running")
            return None

        async with self._lock, self._session_factory() as catalog_session:
            async with self._session_factory() as history_session:
                catalog = CatalogRepository(catalog_session)
                dispatcher = NotificationDispatcher(
                    catalog=catalog,
                    cache=self._cache,
                    push_provider=self._push_provider,
                    settings=self._settings,
                )
                engine = ReconciliationEngine(
                    fetcher=self._fetcher,
                    cache=self._cache,
                    catalog=catalog,
                    history=PriceHistoryRepository(history_session),
                    dispatcher=dispatcher,
                    settings=self._settings,
                    metadata_listener=self._product_info_cache,
                )
                return await engine.run_cycle()
