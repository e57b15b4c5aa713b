from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from courier_api.core.deps import get_db, get_principal
from courier_api.core.security import Principal
from courier_api.domains.notifications.schemas import MarkAllReadOut, NotificationOut
from courier_api.domains.notifications.service import list_notifications, mark_all_read, mark_read


router = APIRouter(prefix="/notifications")


@router.get("", response_model=list[NotificationOut])
def my_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> list[NotificationOut]:
    rows = list_notifications(db, user_id=principal.sub, unread_only=unread_only, limit=limit)
    return [NotificationOut.model_validate(r) for r in rows]


@router.post("/{notification_id}/read", response_model=NotificationOut)
def read_one(
    notification_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> NotificationOut:
    return NotificationOut.model_validate(mark_read(db, user_id=principal.sub, notification_id=notification_id))


@router.post("/read-all", response_model=MarkAllReadOut)
def read_all(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> MarkAllReadOut:
    return MarkAllReadOut(updated=mark_all_read(db, user_id=principal.sub))
