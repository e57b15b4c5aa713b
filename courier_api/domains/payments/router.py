from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from courier_api.core.deps import current_rider, get_db
from courier_api.domains.payments.schemas import EarningsSummaryOut, RiderPaymentOut
from courier_api.domains.payments.service import earnings_summary, list_payments
from courier_api.domains.rider.models import Rider


router = APIRouter(prefix="/payments")


@router.get("/me", response_model=list[RiderPaymentOut])
def my_payments(
    limit: int = Query(default=100, ge=1, le=500),
    rider: Rider = Depends(current_rider),
    db: Session = Depends(get_db),
) -> list[RiderPaymentOut]:
    return [RiderPaymentOut.model_validate(p) for p in list_payments(db, rider_id=rider.id, limit=limit)]


@router.get("/me/summary", response_model=EarningsSummaryOut)
def my_summary(rider: Rider = Depends(current_rider), db: Session = Depends(get_db)) -> EarningsSummaryOut:
    return EarningsSummaryOut(**earnings_summary(db, rider_id=rider.id))
