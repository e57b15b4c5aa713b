from datetime import datetime

from pydantic import BaseModel, ConfigDict

from courier_api.domains.notifications.models import NotificationType


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    order_id: str | None = None
    rider_request_id: str | None = None
    is_read: bool
    created_at: datetime


class MarkAllReadOut(BaseModel):
    updated: int


class BulkNotifyOut(BaseModel):
    sent: int
    failed: int
    failures: list[str] = []
