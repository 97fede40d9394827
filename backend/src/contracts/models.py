from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────────────


class DedupState(str, enum.Enum):
    """Per-subscription notification state for the current excursion.

    ARMED: no alert has been sent since the price was last above target.
    NOTIFIED: an alert was delivered; nothing more until the price rises
    back above target.
    """

    ARMED = "armed"
    NOTIFIED = "notified"


class MatchOutcome(str, enum.Enum):
    NONE = "none"
    REARM = "rearm"
    NOTIFY = "notify"


# ── Pydantic schemas ──────────────────────────────────────────────────────────


class FetchedPrice(BaseModel):
    """What the shop adapter service returns for a single product."""

    price: float
    is_sold_out: bool
    name: str
    image_url: str


class PriceObservation(BaseModel):
    product_id: uuid.UUID
    product_price: float
    is_sold_out: bool
    product_name: str
    image_url: str
    shop: str
    product_code: str


class SnapshotEntry(BaseModel):
    price: float
    is_sold_out: bool
    lowest_price_ever: float


class PushMessage(BaseModel):
    token: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    image_url: str = ""
    thread_id: str = ""


class SendResult(BaseModel):
    success: bool
    error: str | None = None


class CycleReport(BaseModel):
    cycle_id: str
    products_total: int = 0
    fetch_failures: int = 0
    changed: int = 0
    history_written: int = 0
    notification_candidates: int = 0
    notifications_sent: int = 0
    metadata_updated: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None


# ── SQLAlchemy ORM ─────────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    pass


class TrackedProduct(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    shop: Mapped[str] = mapped_column(String(50), nullable=False)
    product_code: Mapped[str] = mapped_column(String(200), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("shop", "product_code", name="uq_products_shop_code"),
    )


class TrackingSubscription(Base):
    __tablename__ = "tracking_products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    target_price: Mapped[float] = mapped_column(Float, nullable=False)
    dedup_state: Mapped[DedupState] = mapped_column(
        Enum(DedupState, name="dedup_state_enum"),
        nullable=False,
        default=DedupState.ARMED,
    )
    alert_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_tracking_user_product"),
        Index("ix_tracking_products_product_id", "product_id"),
    )


class PriceHistoryRecord(Base):
    __tablename__ = "price_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    is_sold_out: Mapped[bool] = mapped_column(Boolean, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_price_history_product_observed", "product_id", "observed_at"),
    )
