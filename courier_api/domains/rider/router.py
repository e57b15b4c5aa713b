from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from courier_api.core.deps import current_rider, get_db, require_admin, require_rider
from courier_api.core.security import Principal
from courier_api.domains.rider.models import Rider
from courier_api.domains.rider.schemas import LocationIn, OnlineIn, RiderOut
from courier_api.domains.rider.service import online_riders, set_online, update_location


router = APIRouter(prefix="/riders")


@router.get("/me", response_model=RiderOut)
def me(rider: Rider = Depends(current_rider)) -> RiderOut:
    return RiderOut.model_validate(rider)


@router.post("/me/online", response_model=RiderOut)
def toggle_online(
    payload: OnlineIn,
    principal: Principal = Depends(require_rider),
    db: Session = Depends(get_db),
) -> RiderOut:
    return RiderOut.model_validate(set_online(db, user_id=principal.sub, is_online=payload.is_online))


@router.post("/me/location", response_model=RiderOut)
def report_location(
    payload: LocationIn,
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> RiderOut:
    return RiderOut.model_validate(update_location(db, rider=rider, lat=payload.lat, lng=payload.lng))


@router.get("/online", response_model=list[RiderOut])
def list_online(_: Principal = Depends(require_admin), db: Session = Depends(get_db)) -> list[RiderOut]:
    return [RiderOut.model_validate(r) for r in online_riders(db)]
