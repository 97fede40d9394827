from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI

from backend.src.api.database import async_session_factory, engine
from backend.src.api.routes import router
from backend.src.config import settings
from backend.src.contracts.models import Base
from backend.src.fetcher.gateway import HttpPriceFetcher
from backend.src.notifier.apns_notifier import ApnsPushProvider
from backend.src.scheduler.scheduler import PriceCheckScheduler

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper()),
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    logger.info("starting_up", interval_minutes=settings.price_check_interval_minutes)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_ready")

    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)

    scheduler = PriceCheckScheduler(
        settings=settings,
        session_factory=async_session_factory,
        redis_client=redis_client,
        fetcher=HttpPriceFetcher(settings),
        push_provider=ApnsPushProvider(settings),
    )
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("scheduler_started")

    yield

    # Shutdown
    scheduler.stop()
    logger.info("scheduler_stopped")

    await redis_client.aclose()
    await engine.dispose()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Price Drop Alert API",
    description="Tracks product prices and pushes target price alerts",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router)
