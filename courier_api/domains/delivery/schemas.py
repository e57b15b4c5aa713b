from datetime import datetime

from pydantic import BaseModel

from courier_api.domains.delivery.models import DeliveryKind, DeliveryStatus


class Place(BaseModel):
    address: str
    lat: float | None = None
    lng: float | None = None


class DeliveryOut(BaseModel):
    """One shape for business orders and standalone rider requests."""

    id: str
    kind: DeliveryKind
    status: DeliveryStatus
    customer_id: str
    customer_phone: str | None = None
    rider_id: str | None = None
    pickup: Place
    dropoff: Place
    item_description: str | None = None
    total: float
    business_name: str | None = None
    items: list = []
    created_at: datetime
    updated_at: datetime | None = None


class StatusIn(BaseModel):
    status: DeliveryStatus
