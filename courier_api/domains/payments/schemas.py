from datetime import datetime

from pydantic import BaseModel, ConfigDict

from courier_api.domains.payments.models import PaymentStatus


class RiderPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rider_id: str
    order_id: str | None = None
    rider_request_id: str | None = None
    distance_km: float
    calculated_amount: float
    commission_pct: float
    commission_amount: float
    final_amount: float
    status: PaymentStatus
    created_at: datetime


class EarningsSummaryOut(BaseModel):
    rider_id: str
    deliveries: int
    total_earnings: float
    total_commission: float
    pending_amount: float
