from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from courier_api.core.deps import current_rider, get_db, require_admin, require_roles
from courier_api.core.errors import NotAuthorized
from courier_api.core.security import Principal
from courier_api.domains.delivery.models import DeliveryKind
from courier_api.domains.delivery.schemas import DeliveryOut, StatusIn
from courier_api.domains.delivery.service import (
    cancel_delivery,
    claim_delivery,
    list_active,
    list_completed,
    list_pending,
    notify_online_riders,
    transition_status,
)
from courier_api.domains.notifications.schemas import BulkNotifyOut
from courier_api.domains.rider.models import Rider


router = APIRouter(prefix="/deliveries")


@router.get("/pending", response_model=list[DeliveryOut])
def pending(
    limit: int = Query(default=100, ge=1, le=500),
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> list[DeliveryOut]:
    if not rider.is_active:
        raise NotAuthorized("Rider account is not active")
    return list_pending(db, limit=limit)


@router.get("/active", response_model=list[DeliveryOut])
def active(rider: Rider = Depends(current_rider), db: Session = Depends(get_db)) -> list[DeliveryOut]:
    return list_active(db, rider_id=rider.id)


@router.get("/completed", response_model=list[DeliveryOut])
def completed(
    limit: int = Query(default=20, ge=1, le=100),
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> list[DeliveryOut]:
    return list_completed(db, rider_id=rider.id, limit=limit)


@router.post("/{kind}/{delivery_id}/claim", response_model=DeliveryOut)
def claim(
    kind: DeliveryKind,
    delivery_id: str,
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> DeliveryOut:
    return claim_delivery(db, kind=kind, delivery_id=delivery_id, rider=rider)


@router.post("/{kind}/{delivery_id}/status", response_model=DeliveryOut)
def change_status(
    kind: DeliveryKind,
    delivery_id: str,
    payload: StatusIn,
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> DeliveryOut:
    return transition_status(db, kind=kind, delivery_id=delivery_id, target=payload.status, rider=rider)


@router.post("/{kind}/{delivery_id}/cancel", response_model=DeliveryOut)
def cancel(
    kind: DeliveryKind,
    delivery_id: str,
    principal: Principal = Depends(require_roles({"customer", "business", "admin"})),
    db: Session = Depends(get_db),
) -> DeliveryOut:
    return cancel_delivery(db, kind=kind, delivery_id=delivery_id, principal=principal)


@router.post("/{kind}/{delivery_id}/broadcast", response_model=BulkNotifyOut)
def broadcast(
    kind: DeliveryKind,
    delivery_id: str,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BulkNotifyOut:
    return BulkNotifyOut(**notify_online_riders(db, kind=kind, delivery_id=delivery_id).to_dict())
