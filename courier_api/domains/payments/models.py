import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from courier_api.core.db import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PAID = "paid"


class RiderPayment(Base):
    __tablename__ = "rider_payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, index=True)
    # Unique per delivery: a second create for the same delivery must not double-count earnings.
    order_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    rider_request_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)

    distance_km: Mapped[float] = mapped_column(Float, default=0.0)
    base_fee: Mapped[float] = mapped_column(Float)
    per_km_rate: Mapped[float] = mapped_column(Float)
    calculated_amount: Mapped[float] = mapped_column(Float)
    commission_pct: Mapped[float] = mapped_column(Float)
    commission_amount: Mapped[float] = mapped_column(Float)
    final_amount: Mapped[float] = mapped_column(Float)

    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
