import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from courier_api.core.config import settings
from courier_api.core.errors import ValidationError
from courier_api.domains.delivery.models import DeliveryStatus, Order, RiderRequest
from courier_api.domains.notifications.models import NotificationType
from courier_api.domains.notifications.service import notify_best_effort
from courier_api.domains.payments.service import haversine_km
from courier_api.domains.realtime.feed import publish_change
from courier_api.domains.rider.models import Rider

logger = logging.getLogger(__name__)


def find_rider_by_user(db: Session, user_id: str) -> Rider | None:
    return db.query(Rider).filter(Rider.user_id == user_id).one_or_none()


def get_rider_by_user(db: Session, user_id: str) -> Rider:
    rider = find_rider_by_user(db, user_id)
    if rider is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rider not found")
    return rider


def _presence_row(rider: Rider) -> dict:
    return {
        "id": rider.id,
        "user_id": rider.user_id,
        "is_online": rider.is_online,
        "current_location_lat": rider.current_location_lat,
        "current_location_lng": rider.current_location_lng,
    }


def set_online(db: Session, *, user_id: str, is_online: bool) -> Rider:
    # Last write wins; repeating the same value is harmless.
    rider = get_rider_by_user(db, user_id)
    rider.is_online = is_online
    rider.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(rider)
    logger.info("rider presence rider_id=%s is_online=%s", rider.id, is_online)
    publish_change("riders", "UPDATE", new=_presence_row(rider))
    return rider


def _validate_coords(lat: float, lng: float) -> None:
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ValidationError("Coordinates out of range", lat=lat, lng=lng)


def update_location(db: Session, *, rider: Rider, lat: float, lng: float) -> Rider:
    _validate_coords(lat, lng)
    rider.current_location_lat = lat
    rider.current_location_lng = lng
    rider.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(rider)
    publish_change("riders", "UPDATE", new=_presence_row(rider))
    notify_nearby_customers(db, rider=rider)
    return rider


def notify_nearby_customers(db: Session, *, rider: Rider) -> int:
    """
    Tell each customer whose delivery is on the way and within the nearby radius,
    once per delivery. Returns how many customers were notified.
    """
    if rider.current_location_lat is None or rider.current_location_lng is None:
        return 0

    candidates = [
        (Order, Order.delivery_lat, Order.delivery_lng, "order_id"),
        (RiderRequest, RiderRequest.dropoff_lat, RiderRequest.dropoff_lng, "rider_request_id"),
    ]
    notified = 0
    for model, lat_col, lng_col, backlink in candidates:
        rows = (
            db.query(model)
            .filter(
                model.rider_id == rider.id,
                model.status == DeliveryStatus.ON_WAY,
                model.nearby_notified_at.is_(None),
                lat_col.isnot(None),
                lng_col.isnot(None),
            )
            .all()
        )
        for row in rows:
            drop_lat = row.delivery_lat if model is Order else row.dropoff_lat
            drop_lng = row.delivery_lng if model is Order else row.dropoff_lng
            distance = haversine_km(rider.current_location_lat, rider.current_location_lng, drop_lat, drop_lng)
            if distance > settings.nearby_threshold_km:
                continue
            # Claim the one-shot flag with a conditional write so two location pings can't double-notify.
            claimed = (
                db.query(model)
                .filter(model.id == row.id, model.nearby_notified_at.is_(None))
                .update({"nearby_notified_at": datetime.now(timezone.utc)}, synchronize_session=False)
            )
            db.commit()
            if not claimed:
                continue
            notify_best_effort(
                db,
                user_id=row.customer_id,
                title="Rider is nearby!",
                message=f"Your rider {rider.name} is less than {int(settings.nearby_threshold_km * 1000)}m away. Get ready to receive your order!",
                type=NotificationType.RIDER,
                **{backlink: row.id},
            )
            notified += 1
    return notified


def online_riders(db: Session) -> list[Rider]:
    return (
        db.query(Rider)
        .filter(Rider.is_online.is_(True), Rider.is_active.is_(True), Rider.user_id.isnot(None))
        .order_by(Rider.updated_at.desc())
        .all()
    )
