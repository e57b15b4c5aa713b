import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from courier_api.core.db import Base


class DeliveryStatus(str, enum.Enum):
    PLACED = "placed"
    PREPARING = "preparing"
    ON_WAY = "on_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryKind(str, enum.Enum):
    ORDER = "order"
    RIDER_REQUEST = "rider_request"


TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})
NON_TERMINAL_STATUSES = frozenset(DeliveryStatus) - TERMINAL_STATUSES

# A business order may still be in the kitchen when a rider takes it;
# a standalone rider request is only up for grabs while freshly placed.
CLAIMABLE_STATUSES: dict[DeliveryKind, frozenset[DeliveryStatus]] = {
    DeliveryKind.ORDER: frozenset({DeliveryStatus.PLACED, DeliveryStatus.PREPARING}),
    DeliveryKind.RIDER_REQUEST: frozenset({DeliveryStatus.PLACED}),
}

CLAIMED_STATUS: dict[DeliveryKind, DeliveryStatus] = {
    DeliveryKind.ORDER: DeliveryStatus.ON_WAY,
    DeliveryKind.RIDER_REQUEST: DeliveryStatus.PREPARING,
}

ACTIVE_STATUSES = frozenset({DeliveryStatus.PLACED, DeliveryStatus.PREPARING, DeliveryStatus.ON_WAY})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String, index=True)
    customer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    business_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    rider_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)

    status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), default=DeliveryStatus.PLACED, index=True)

    pickup_address: Mapped[str | None] = mapped_column(String, nullable=True)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    items: Mapped[list | None] = mapped_column(JSON, nullable=True)
    total: Mapped[float] = mapped_column(Float, default=0.0)

    # Set once the "rider is nearby" notification went out.
    nearby_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class RiderRequest(Base):
    __tablename__ = "rider_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String, index=True)
    customer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    rider_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)

    status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), default=DeliveryStatus.PLACED, index=True)

    pickup_address: Mapped[str] = mapped_column(String)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_address: Mapped[str] = mapped_column(String)
    dropoff_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    item_description: Mapped[str | None] = mapped_column(String, nullable=True)
    total: Mapped[float] = mapped_column(Float, default=0.0)

    nearby_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


MODELS: dict[DeliveryKind, type[Order] | type[RiderRequest]] = {
    DeliveryKind.ORDER: Order,
    DeliveryKind.RIDER_REQUEST: RiderRequest,
}
