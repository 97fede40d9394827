from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from backend.src.config import Settings
from backend.src.contracts.errors import CacheUnavailable
from backend.src.contracts.models import CycleReport
from backend.src.history.repository import PriceHistoryRepository
from backend.src.products.repository import CatalogRepository
from backend.src.scheduler.scheduler import PriceCheckScheduler


def _session_factory() -> MagicMock:
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    return MagicMock(return_value=session)


def _make_scheduler(settings: Settings) -> PriceCheckScheduler:
    return PriceCheckScheduler(
        settings=settings,
        session_factory=_session_factory(),
        redis_client=MagicMock(),
        fetcher=AsyncMock(),
        push_provider=AsyncMock(),
    )


class TestStartStop:
    def test_start_registers_single_instance_interval_job(self, settings: Settings) -> None:
        settings.price_check_interval_minutes = 10
        with patch("backend.src.scheduler.scheduler.AsyncIOScheduler") as mock_cls:
            scheduler = _make_scheduler(settings)
            scheduler.start()

        aps = mock_cls.return_value
        aps.add_job.assert_called_once()
        kwargs = aps.add_job.call_args.kwargs
        assert kwargs["id"] == "price_check_cycle"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["trigger"].interval.total_seconds() == 600
        aps.start.assert_called_once()

    def test_stop_shuts_down_without_waiting(self, settings: Settings) -> None:
        with patch("backend.src.scheduler.scheduler.AsyncIOScheduler") as mock_cls:
            scheduler = _make_scheduler(settings)
            scheduler.stop()

        mock_cls.return_value.shutdown.assert_called_once_with(wait=False)


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_trigger_now_runs_engine_with_repositories(self, settings: Settings) -> None:
        scheduler = _make_scheduler(settings)
        report = CycleReport(cycle_id="abc", changed=2)

        with patch("backend.src.scheduler.scheduler.ReconciliationEngine") as mock_engine_cls:
            mock_engine_cls.return_value.run_cycle = AsyncMock(return_value=report)
            result = await scheduler.trigger_now()

        assert result is report
        kwargs = mock_engine_cls.call_args.kwargs
        assert isinstance(kwargs["catalog"], CatalogRepository)
        assert isinstance(kwargs["history"], PriceHistoryRepository)
        assert kwargs["dispatcher"]._catalog is kwargs["catalog"]

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self, settings: Settings) -> None:
        scheduler = _make_scheduler(settings)
        release = asyncio.Event()
        runs = 0

        async def slow_cycle() -> CycleReport:
            nonlocal runs
            runs += 1
            await release.wait()
            return CycleReport(cycle_id="slow")

        with patch("backend.src.scheduler.scheduler.ReconciliationEngine") as mock_engine_cls:
            mock_engine_cls.return_value.run_cycle = slow_cycle
            first = asyncio.create_task(scheduler.trigger_now())
            await asyncio.sleep(0)
            assert scheduler.is_running is True

            second = await scheduler.trigger_now()

            release.set()
            first_result = await first

        assert second is None
        assert first_result is not None
        assert runs == 1
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_scheduled_cycle_logs_and_survives_abort(self, settings: Settings) -> None:
        scheduler = _make_scheduler(settings)

        with patch("backend.src.scheduler.scheduler.ReconciliationEngine") as mock_engine_cls:
            mock_engine_cls.return_value.run_cycle = AsyncMock(
                side_effect=CacheUnavailable("redis down")
            )
            await scheduler._scheduled_cycle()

        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_scheduled_cycle_survives_unexpected_error(self, settings: Settings) -> None:
        scheduler = _make_scheduler(settings)

        with patch("backend.src.scheduler.scheduler.ReconciliationEngine") as mock_engine_cls:
            mock_engine_cls.return_value.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))
            await scheduler._scheduled_cycle()

        assert scheduler.is_running is False
