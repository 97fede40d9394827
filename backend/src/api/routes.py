import secrets

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.api.database import get_db
from backend.src.config import settings
from backend.src.contracts.errors import PriceAlertError
from backend.src.contracts.models import CycleReport
from backend.src.scheduler.scheduler import PriceCheckScheduler

logger = structlog.get_logger(__name__)

router = APIRouter()


# ── Request / Response schemas ────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    db: str
    redis: str


# ── Dependencies ──────────────────────────────────────────────────────────────


def require_admin_token(x_admin_token: str = Header(default="")) -> None:
    if not secrets.compare_digest(x_admin_token, settings.admin_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )


def get_scheduler(request: Request) -> PriceCheckScheduler:
    scheduler: PriceCheckScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler not running",
        )
    return scheduler


# ── Admin ─────────────────────────────────────────────────────────────────────


@router.post("/admin/price-check", dependencies=[Depends(require_admin_token)])
async def trigger_price_check(
    scheduler: PriceCheckScheduler = Depends(get_scheduler),
) -> CycleReport:
    try:
        report = await scheduler.trigger_now()
    except PriceAlertError as exc:
        logger.error("manual_price_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    if report is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A price check is already running",
        )
    return report


# ── Health ────────────────────────────────────────────────────────────────────


@router.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_db),
) -> HealthResponse:
    db_status = "ok"
    redis_status = "ok"

    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    try:
        redis_client = aioredis.from_url(settings.redis_url)
        await redis_client.ping()
        await redis_client.aclose()
    except Exception:
        redis_status = "error"

    overall = "ok" if db_status == "ok" and redis_status == "ok" else "degraded"

    return HealthResponse(
        status=overall,
        db=db_status,
        redis=redis_status,
    )
