import logging
import math

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from courier_api.core.config import settings
from courier_api.core.errors import ValidationError
from courier_api.domains.delivery.models import DeliveryStatus, Order, RiderRequest
from courier_api.domains.payments.models import PaymentStatus, RiderPayment
from courier_api.domains.realtime.feed import publish_change
from courier_api.domains.rider.models import Rider

logger = logging.getLogger(__name__)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def calculate_distance_km(
    lat1: float | None, lon1: float | None, lat2: float | None, lon2: float | None
) -> float:
    """Approximate road distance; 0 when either end has no coordinates."""
    if None in (lat1, lon1, lat2, lon2):
        return 0.0
    return round(haversine_km(lat1, lon1, lat2, lon2) * settings.road_distance_factor, 1)


def calculate_payment(distance_km: float) -> float:
    calculated = settings.payment_base_fee + distance_km * settings.payment_per_km_rate
    return float(max(round(calculated), settings.payment_min_amount))


def resolve_commission_pct(rider: Rider | None) -> float:
    if rider is not None and rider.commission_rate is not None:
        return float(rider.commission_rate)
    return float(settings.default_rider_commission_pct)


def _existing(db: Session, *, order_id: str | None, rider_request_id: str | None) -> RiderPayment | None:
    q = db.query(RiderPayment)
    if order_id:
        return q.filter(RiderPayment.order_id == order_id).one_or_none()
    return q.filter(RiderPayment.rider_request_id == rider_request_id).one_or_none()


def _delivered_row(db: Session, *, order_id: str | None, rider_request_id: str | None):
    if order_id:
        row = db.get(Order, order_id)
        coords = (row.pickup_lat, row.pickup_lng, row.delivery_lat, row.delivery_lng) if row else None
    else:
        row = db.get(RiderRequest, rider_request_id)
        coords = (row.pickup_lat, row.pickup_lng, row.dropoff_lat, row.dropoff_lng) if row else None
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Delivery not found")
    if row.status != DeliveryStatus.DELIVERED or not row.rider_id:
        raise ValidationError("Payments are only created for delivered, assigned deliveries")
    return row, coords


def create_payment(
    db: Session,
    *,
    order_id: str | None = None,
    rider_request_id: str | None = None,
) -> tuple[RiderPayment, bool]:
    """
    Create the rider payment for a delivered delivery.

    Idempotent by delivery id: a second call returns the existing row with
    created=False, and the rider's trip counter only moves when a row is created.
    """
    if bool(order_id) == bool(rider_request_id):
        raise ValidationError("Exactly one of order_id or rider_request_id is required")

    existing = _existing(db, order_id=order_id, rider_request_id=rider_request_id)
    if existing is not None:
        return existing, False

    row, coords = _delivered_row(db, order_id=order_id, rider_request_id=rider_request_id)
    rider = db.get(Rider, row.rider_id)

    distance_km = calculate_distance_km(*coords)
    amount = calculate_payment(distance_km)
    commission_pct = resolve_commission_pct(rider)
    commission_amount = round(amount * commission_pct / 100.0, 2)

    payment = RiderPayment(
        rider_id=row.rider_id,
        order_id=order_id,
        rider_request_id=rider_request_id,
        distance_km=distance_km,
        base_fee=settings.payment_base_fee,
        per_km_rate=settings.payment_per_km_rate,
        calculated_amount=amount,
        commission_pct=commission_pct,
        commission_amount=commission_amount,
        final_amount=round(amount - commission_amount, 2),
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    if rider is not None:
        rider.total_trips = (rider.total_trips or 0) + 1
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent create for the same delivery.
        db.rollback()
        existing = _existing(db, order_id=order_id, rider_request_id=rider_request_id)
        if existing is None:
            raise
        return existing, False

    db.refresh(payment)
    logger.info(
        "rider payment created rider_id=%s order_id=%s rider_request_id=%s amount=%s commission_pct=%s",
        payment.rider_id,
        order_id,
        rider_request_id,
        payment.final_amount,
        commission_pct,
    )
    publish_change(
        "rider_payments",
        "INSERT",
        new={"id": payment.id, "rider_id": payment.rider_id, "order_id": order_id, "rider_request_id": rider_request_id},
    )
    return payment, True


def list_payments(db: Session, *, rider_id: str, limit: int = 100) -> list[RiderPayment]:
    return (
        db.query(RiderPayment)
        .filter(RiderPayment.rider_id == rider_id)
        .order_by(RiderPayment.created_at.desc())
        .limit(limit)
        .all()
    )


def earnings_summary(db: Session, *, rider_id: str) -> dict:
    count, total, commission = (
        db.query(
            func.count(RiderPayment.id),
            func.coalesce(func.sum(RiderPayment.final_amount), 0.0),
            func.coalesce(func.sum(RiderPayment.commission_amount), 0.0),
        )
        .filter(RiderPayment.rider_id == rider_id)
        .one()
    )
    pending = (
        db.query(func.coalesce(func.sum(RiderPayment.final_amount), 0.0))
        .filter(RiderPayment.rider_id == rider_id, RiderPayment.status == PaymentStatus.PENDING)
        .scalar()
    )
    return {
        "rider_id": rider_id,
        "deliveries": int(count or 0),
        "total_earnings": float(total or 0.0),
        "total_commission": float(commission or 0.0),
        "pending_amount": float(pending or 0.0),
    }
