"""
Delivery claim and status protocol.

Riders race to claim unassigned deliveries. The only thing that makes the race
safe is the conditional UPDATE issued by `conditional_claim`: its
`rider_id IS NULL` predicate is evaluated by the database at write time, so of
any number of concurrent claims exactly one matches a row and the others see
zero rows affected. The read in `ensure_claimable` only lets a rider fail fast;
it proves nothing about the write that follows.
"""

import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from courier_api.core.errors import AlreadyClaimed, InvalidTransition, NotAuthorized, ValidationError
from courier_api.core.security import Principal
from courier_api.domains.delivery.models import (
    ACTIVE_STATUSES,
    CLAIMABLE_STATUSES,
    CLAIMED_STATUS,
    MODELS,
    NON_TERMINAL_STATUSES,
    DeliveryKind,
    DeliveryStatus,
    Order,
    RiderRequest,
)
from courier_api.domains.delivery.schemas import DeliveryOut, Place
from courier_api.domains.notifications.models import NotificationType
from courier_api.domains.notifications.service import BulkNotifyResult, bulk_notify, notify_best_effort
from courier_api.domains.payments.service import create_payment
from courier_api.domains.realtime.feed import publish_change
from courier_api.domains.rider.models import Rider
from courier_api.domains.rider.service import online_riders

logger = logging.getLogger(__name__)


# target status -> statuses a rider may move it out of
RIDER_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.ON_WAY: frozenset({DeliveryStatus.PREPARING}),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.ON_WAY}),
    DeliveryStatus.CANCELLED: NON_TERMINAL_STATUSES,
}

# (kind, status) -> (title, message) sent to the customer
_CUSTOMER_MESSAGES: dict[tuple[DeliveryKind, DeliveryStatus], tuple[str, str]] = {
    (DeliveryKind.ORDER, DeliveryStatus.ON_WAY): ("Your Order is On The Way!", "Your rider is delivering your order"),
    (DeliveryKind.ORDER, DeliveryStatus.DELIVERED): ("Order Delivered!", "Your order has been delivered successfully"),
    (DeliveryKind.ORDER, DeliveryStatus.CANCELLED): ("Order Cancelled", "Your order has been cancelled"),
    (DeliveryKind.RIDER_REQUEST, DeliveryStatus.ON_WAY): (
        "Rider On The Way!",
        "Your rider is on the way to deliver your package",
    ),
    (DeliveryKind.RIDER_REQUEST, DeliveryStatus.DELIVERED): (
        "Delivery Completed!",
        "Your package has been delivered successfully",
    ),
    (DeliveryKind.RIDER_REQUEST, DeliveryStatus.CANCELLED): ("Delivery Cancelled", "Your delivery has been cancelled"),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _backlink(kind: DeliveryKind, delivery_id: str) -> dict:
    if kind == DeliveryKind.ORDER:
        return {"order_id": delivery_id}
    return {"rider_request_id": delivery_id}


def to_delivery_out(row: Order | RiderRequest) -> DeliveryOut:
    if isinstance(row, Order):
        items = row.items if isinstance(row.items, list) else []
        business = row.business_name or "Business"
        return DeliveryOut(
            id=row.id,
            kind=DeliveryKind.ORDER,
            status=row.status,
            customer_id=row.customer_id,
            customer_phone=row.customer_phone,
            rider_id=row.rider_id,
            pickup=Place(address=row.pickup_address or business, lat=row.pickup_lat, lng=row.pickup_lng),
            dropoff=Place(
                address=row.delivery_address or "Customer Location",
                lat=row.delivery_lat,
                lng=row.delivery_lng,
            ),
            item_description=f"{len(items)} item(s) from {business}" if items else "Food Order",
            total=row.total,
            business_name=row.business_name,
            items=items,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
    return DeliveryOut(
        id=row.id,
        kind=DeliveryKind.RIDER_REQUEST,
        status=row.status,
        customer_id=row.customer_id,
        customer_phone=row.customer_phone,
        rider_id=row.rider_id,
        pickup=Place(address=row.pickup_address, lat=row.pickup_lat, lng=row.pickup_lng),
        dropoff=Place(address=row.dropoff_address, lat=row.dropoff_lat, lng=row.dropoff_lng),
        item_description=row.item_description,
        total=row.total,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _change_row(kind: DeliveryKind, row: Order | RiderRequest) -> dict:
    return {
        "id": row.id,
        "kind": kind.value,
        "status": row.status.value,
        "rider_id": row.rider_id,
        "customer_id": row.customer_id,
    }


def _newest_first(rows: list[Order | RiderRequest]) -> list[DeliveryOut]:
    out = [to_delivery_out(r) for r in rows]
    out.sort(key=lambda d: d.created_at, reverse=True)
    return out


def list_pending(db: Session, *, limit: int = 100) -> list[DeliveryOut]:
    """Unassigned, claimable deliveries of both kinds, newest first. Read-only."""
    rows: list[Order | RiderRequest] = []
    for kind, model in MODELS.items():
        rows.extend(
            db.query(model)
            .filter(model.rider_id.is_(None), model.status.in_(list(CLAIMABLE_STATUSES[kind])))
            .order_by(model.created_at.desc())
            .limit(limit)
            .all()
        )
    return _newest_first(rows)[:limit]


def list_active(db: Session, *, rider_id: str) -> list[DeliveryOut]:
    rows: list[Order | RiderRequest] = []
    for model in MODELS.values():
        rows.extend(
            db.query(model)
            .filter(model.rider_id == rider_id, model.status.in_(list(ACTIVE_STATUSES)))
            .order_by(model.created_at.desc())
            .all()
        )
    return _newest_first(rows)


def list_completed(db: Session, *, rider_id: str, limit: int = 20) -> list[DeliveryOut]:
    rows: list[Order | RiderRequest] = []
    for model in MODELS.values():
        rows.extend(
            db.query(model)
            .filter(model.rider_id == rider_id, model.status == DeliveryStatus.DELIVERED)
            .order_by(model.created_at.desc())
            .limit(limit)
            .all()
        )
    return _newest_first(rows)[:limit]


def get_delivery_row(db: Session, *, kind: DeliveryKind, delivery_id: str) -> Order | RiderRequest:
    model = MODELS[kind]
    row = db.query(model).filter(model.id == delivery_id).populate_existing().one_or_none()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Delivery not found")
    return row


def _require_eligible(rider: Rider | None) -> Rider:
    if rider is None:
        raise ValidationError("Rider profile not found")
    if not rider.is_active:
        raise NotAuthorized("Rider account is not active")
    return rider


def ensure_claimable(db: Session, *, kind: DeliveryKind, delivery_id: str) -> Order | RiderRequest:
    """Advisory pre-check: lets a losing rider fail fast, never sufficient on its own."""
    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    if row.rider_id is not None or row.status not in CLAIMABLE_STATUSES[kind]:
        raise AlreadyClaimed()
    return row


def conditional_claim(db: Session, *, kind: DeliveryKind, delivery_id: str, rider_id: str) -> int:
    """
    UPDATE ... SET rider_id, status WHERE id AND rider_id IS NULL AND status IN claimable.
    Commits and returns the number of rows affected (0 or 1).
    """
    model = MODELS[kind]
    count = (
        db.query(model)
        .filter(
            model.id == delivery_id,
            model.rider_id.is_(None),
            model.status.in_(list(CLAIMABLE_STATUSES[kind])),
        )
        .update(
            {"rider_id": rider_id, "status": CLAIMED_STATUS[kind], "updated_at": _now()},
            synchronize_session=False,
        )
    )
    db.commit()
    return count


def claim_delivery(db: Session, *, kind: DeliveryKind, delivery_id: str, rider: Rider | None) -> DeliveryOut:
    rider = _require_eligible(rider)

    try:
        before = ensure_claimable(db, kind=kind, delivery_id=delivery_id)
        previous_status = before.status
        if conditional_claim(db, kind=kind, delivery_id=delivery_id, rider_id=rider.id) == 0:
            raise AlreadyClaimed()
    except AlreadyClaimed:
        # Expected outcome of the race, not an error.
        logger.info("claim lost kind=%s delivery_id=%s rider_id=%s", kind.value, delivery_id, rider.id)
        raise

    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    logger.info(
        "claim won kind=%s delivery_id=%s rider_id=%s status=%s",
        kind.value,
        delivery_id,
        rider.id,
        row.status.value,
    )
    publish_change(
        MODELS[kind].__tablename__,
        "UPDATE",
        new=_change_row(kind, row),
        old={"id": row.id, "rider_id": None, "status": previous_status.value},
    )

    if kind == DeliveryKind.ORDER:
        message, ntype = f"{rider.name} is on the way with your order", NotificationType.ORDER
    else:
        message, ntype = f"{rider.name} has been assigned to your delivery", NotificationType.RIDER
    notify_best_effort(
        db,
        user_id=row.customer_id,
        title="Rider Assigned!",
        message=message,
        type=ntype,
        **_backlink(kind, row.id),
    )
    return to_delivery_out(row)


def _diagnose_failed_write(
    db: Session, *, kind: DeliveryKind, delivery_id: str, rider_id: str, target: DeliveryStatus
) -> Exception:
    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    if row.rider_id != rider_id:
        return NotAuthorized()
    return InvalidTransition(f"Cannot move delivery from {row.status.value} to {target.value}")


def transition_status(
    db: Session,
    *,
    kind: DeliveryKind,
    delivery_id: str,
    target: DeliveryStatus,
    rider: Rider | None,
) -> DeliveryOut:
    if rider is None:
        raise ValidationError("Rider profile not found")
    allowed_from = RIDER_TRANSITIONS.get(target)
    if allowed_from is None:
        raise InvalidTransition(f"Riders cannot set status {target.value}")

    model = MODELS[kind]
    # Scoped to the acting rider: another rider's delivery matches zero rows.
    count = (
        db.query(model)
        .filter(model.id == delivery_id, model.rider_id == rider.id, model.status.in_(list(allowed_from)))
        .update({"status": target, "updated_at": _now()}, synchronize_session=False)
    )
    db.commit()
    if count == 0:
        raise _diagnose_failed_write(db, kind=kind, delivery_id=delivery_id, rider_id=rider.id, target=target)

    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    logger.info("status changed kind=%s delivery_id=%s rider_id=%s status=%s", kind.value, delivery_id, rider.id, target.value)
    publish_change(model.__tablename__, "UPDATE", new=_change_row(kind, row))

    _after_transition(db, kind=kind, row=row, target=target)
    return to_delivery_out(row)


def _after_transition(db: Session, *, kind: DeliveryKind, row: Order | RiderRequest, target: DeliveryStatus) -> None:
    if target == DeliveryStatus.DELIVERED:
        try:
            create_payment(db, **_backlink(kind, row.id))
        except Exception:
            # The delivery stays delivered; the payment can be re-created idempotently.
            db.rollback()
            logger.warning("payment creation failed kind=%s delivery_id=%s", kind.value, row.id, exc_info=True)

    title, message = _CUSTOMER_MESSAGES[(kind, target)]
    notify_best_effort(
        db,
        user_id=row.customer_id,
        title=title,
        message=message,
        type=NotificationType.ORDER,
        **_backlink(kind, row.id),
    )


def _may_cancel(principal: Principal, row: Order | RiderRequest) -> bool:
    if principal.role == "admin":
        return True
    if principal.role == "customer":
        return row.customer_id == principal.sub
    if principal.role == "business" and isinstance(row, Order):
        return principal.business_id is not None and row.business_id == principal.business_id
    return False


def cancel_delivery(db: Session, *, kind: DeliveryKind, delivery_id: str, principal: Principal) -> DeliveryOut:
    """Customer / business / admin cancellation of any non-terminal delivery, claimed or not."""
    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    if not _may_cancel(principal, row):
        raise NotAuthorized("You cannot cancel this delivery")

    model = MODELS[kind]
    count = (
        db.query(model)
        .filter(model.id == delivery_id, model.status.in_(list(NON_TERMINAL_STATUSES)))
        .update({"status": DeliveryStatus.CANCELLED, "updated_at": _now()}, synchronize_session=False)
    )
    db.commit()
    row = get_delivery_row(db, kind=kind, delivery_id=delivery_id)
    if count == 0:
        raise InvalidTransition(f"Cannot move delivery from {row.status.value} to cancelled")

    logger.info("delivery cancelled kind=%s delivery_id=%s by=%s", kind.value, delivery_id, principal.role)
    publish_change(model.__tablename__, "UPDATE", new=_change_row(kind, row))

    title, message = _CUSTOMER_MESSAGES[(kind, DeliveryStatus.CANCELLED)]
    if principal.sub != row.customer_id:
        notify_best_effort(
            db, user_id=row.customer_id, title=title, message=message, type=NotificationType.ORDER, **_backlink(kind, row.id)
        )
    if row.rider_id:
        rider = db.get(Rider, row.rider_id)
        notify_best_effort(
            db,
            user_id=rider.user_id if rider else None,
            title=title,
            message="A delivery assigned to you has been cancelled",
            type=NotificationType.RIDER,
            **_backlink(kind, row.id),
        )
    return to_delivery_out(row)


def notify_online_riders(db: Session, *, kind: DeliveryKind, delivery_id: str) -> BulkNotifyResult:
    """Fan a new delivery out to every online, active rider. Partial failures only show in the tally."""
    row = ensure_claimable(db, kind=kind, delivery_id=delivery_id)
    delivery = to_delivery_out(row)
    message = f"You have received a new delivery order from {delivery.pickup.address}"
    if delivery.total:
        message += f" - total {delivery.total:g}"
    recipients = [r.user_id for r in online_riders(db) if r.user_id]
    return bulk_notify(
        db,
        recipients,
        title="New Delivery Request!",
        message=message,
        type=NotificationType.RIDER,
        **_backlink(kind, row.id),
    )
