from pydantic import BaseModel, ConfigDict, Field


class RiderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None = None
    name: str
    phone: str | None = None
    vehicle_type: str | None = None
    is_online: bool
    is_active: bool
    current_location_lat: float | None = None
    current_location_lng: float | None = None
    total_trips: int = 0


class OnlineIn(BaseModel):
    is_online: bool


class LocationIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
