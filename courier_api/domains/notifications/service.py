import logging
from dataclasses import dataclass, field

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from courier_api.domains.notifications.models import Notification, NotificationType
from courier_api.domains.notifications.push import push_to_user
from courier_api.domains.realtime.feed import publish_change

logger = logging.getLogger(__name__)


def _row(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "type": n.type.value,
        "order_id": n.order_id,
        "rider_request_id": n.rider_request_id,
        "is_read": n.is_read,
    }


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    type: NotificationType,
    order_id: str | None = None,
    rider_request_id: str | None = None,
) -> Notification:
    # Only server-side code paths call this; there is no client endpoint that creates notifications.
    if not user_id:
        raise ValueError("Notification recipient is required")
    n = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        order_id=order_id,
        rider_request_id=rider_request_id,
        is_read=False,
    )
    db.add(n)
    db.commit()
    db.refresh(n)
    publish_change("notifications", "INSERT", new=_row(n))
    return n


def notify_best_effort(
    db: Session,
    *,
    user_id: str | None,
    title: str,
    message: str,
    type: NotificationType,
    order_id: str | None = None,
    rider_request_id: str | None = None,
    push: bool = True,
) -> Notification | None:
    """
    In-app notification plus device push. Never raises: the action that
    triggered it has already committed and stays authoritative.
    """
    if not user_id:
        return None
    try:
        n = create_notification(
            db,
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            order_id=order_id,
            rider_request_id=rider_request_id,
        )
    except Exception:
        db.rollback()
        logger.warning("notification failed user_id=%s title=%r", user_id, title, exc_info=True)
        return None

    if push:
        data = {"order_id": order_id, "rider_request_id": rider_request_id, "type": type.value}
        try:
            push_to_user(db, user_id, title=title, body=message, data=data)
        except Exception:
            logger.warning("push lookup failed user_id=%s", user_id, exc_info=True)
    return n


@dataclass
class BulkNotifyResult:
    sent: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "failures": list(self.failures)}


def bulk_notify(
    db: Session,
    user_ids: list[str],
    *,
    title: str,
    message: str,
    type: NotificationType,
    order_id: str | None = None,
    rider_request_id: str | None = None,
) -> BulkNotifyResult:
    result = BulkNotifyResult()
    seen: set[str] = set()
    for uid in user_ids:
        if not uid or uid in seen:
            continue
        seen.add(uid)
        n = notify_best_effort(
            db,
            user_id=uid,
            title=title,
            message=message,
            type=type,
            order_id=order_id,
            rider_request_id=rider_request_id,
        )
        if n is None:
            result.failed += 1
            result.failures.append(uid)
        else:
            result.sent += 1
    logger.info("bulk notify title=%r sent=%s failed=%s", title, result.sent, result.failed)
    return result


def list_notifications(db: Session, *, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, *, user_id: str, notification_id: str) -> Notification:
    n = db.get(Notification, notification_id)
    if n is None or n.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if not n.is_read:
        n.is_read = True
        db.commit()
        db.refresh(n)
        publish_change("notifications", "UPDATE", new=_row(n))
    return n


def mark_all_read(db: Session, *, user_id: str) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({"is_read": True}, synchronize_session=False)
    )
    db.commit()
    if count:
        publish_change("notifications", "UPDATE", new={"user_id": user_id, "is_read": True})
    return count
