"""
In-app notifications, bulk fan-out and push best-effort behaviour.
"""
import pytest
import requests

from courier_api.core.errors import AlreadyClaimed
from courier_api.domains.delivery.models import DeliveryKind, DeliveryStatus
from courier_api.domains.delivery.service import notify_online_riders
from courier_api.domains.notifications import push
from courier_api.domains.notifications import service as notifications
from courier_api.domains.notifications.models import Notification, NotificationType, PushDevice


def test_bulk_notify_tallies_and_dedupes(db):
    result = notifications.bulk_notify(
        db, ["u1", "u2", "u1", None, ""], title="Hi", message="there", type=NotificationType.SYSTEM
    )

    assert (result.sent, result.failed) == (2, 0)
    assert db.query(Notification).count() == 2


def test_bulk_notify_reports_partial_failures(monkeypatch, db):
    """One failing recipient shows up in the tally; the rest still get theirs."""
    real = notifications.create_notification

    def flaky(db, **kw):
        if kw["user_id"] == "bad":
            raise RuntimeError("insert failed")
        return real(db, **kw)

    monkeypatch.setattr(notifications, "create_notification", flaky)

    result = notifications.bulk_notify(db, ["u1", "bad", "u2"], title="t", message="m", type=NotificationType.RIDER)

    assert result.to_dict() == {"sent": 2, "failed": 1, "failures": ["bad"]}


def test_notify_best_effort_skips_missing_recipient(db):
    assert notifications.notify_best_effort(db, user_id=None, title="t", message="m", type=NotificationType.ORDER) is None
    assert db.query(Notification).count() == 0


def test_broadcast_reaches_online_active_riders(client, auth, make_rider, make_order, db):
    make_rider(user_id="u1")
    make_rider(user_id="u2")
    make_rider(user_id="u3", is_online=False)
    make_rider(user_id="u4", is_active=False)
    order = make_order()

    resp = client.post(f"/deliveries/order/{order.id}/broadcast", headers=auth("admin-1", role="admin"))

    assert resp.status_code == 200
    assert resp.json() == {"sent": 2, "failed": 0, "failures": []}
    recipients = {n.user_id for n in db.query(Notification).all()}
    assert recipients == {"u1", "u2"}


def test_broadcast_requires_claimable_delivery(make_rider, make_order, db):
    rider = make_rider()
    order = make_order(rider_id=rider.id, status=DeliveryStatus.ON_WAY)

    with pytest.raises(AlreadyClaimed):
        notify_online_riders(db, kind=DeliveryKind.ORDER, delivery_id=order.id)


def test_broadcast_is_admin_only(client, auth, make_order):
    order = make_order()
    resp = client.post(f"/deliveries/order/{order.id}/broadcast", headers=auth("rider-user-1"))
    assert resp.status_code == 403


def test_list_and_mark_read(client, auth, db):
    for title in ("one", "two"):
        notifications.create_notification(db, user_id="cust-1", title=title, message="m", type=NotificationType.ORDER)
    notifications.create_notification(db, user_id="cust-2", title="theirs", message="m", type=NotificationType.ORDER)
    headers = auth("cust-1", role="customer")

    listed = client.get("/notifications", headers=headers).json()
    assert {n["title"] for n in listed} == {"one", "two"}

    first = listed[0]["id"]
    assert client.post(f"/notifications/{first}/read", headers=headers).json()["is_read"] is True
    assert len(client.get("/notifications", params={"unread_only": "true"}, headers=headers).json()) == 1

    assert client.post("/notifications/read-all", headers=headers).json() == {"updated": 1}
    assert client.get("/notifications", params={"unread_only": "true"}, headers=headers).json() == []


def test_cannot_mark_someone_elses_notification(client, auth, db):
    n = notifications.create_notification(db, user_id="cust-2", title="t", message="m", type=NotificationType.ORDER)
    resp = client.post(f"/notifications/{n.id}/read", headers=auth("cust-1", role="customer"))
    assert resp.status_code == 404


def test_push_skipped_when_gateway_not_configured():
    assert push.send_push(["tok"], title="t", body="b") is False


def test_push_failure_is_swallowed(monkeypatch):
    monkeypatch.setattr(push.settings, "push_api_url", "https://push.example/api/v1/notifications")
    monkeypatch.setattr(push.settings, "push_app_id", "app")
    monkeypatch.setattr(push.settings, "push_api_key", "key")

    def down(*args, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(push.requests, "post", down)

    assert push.send_push(["tok"], title="t", body="b") is False


def test_device_tokens_are_per_user(db):
    db.add_all(
        [
            PushDevice(user_id="u1", device_token="a"),
            PushDevice(user_id="u1", device_token="b"),
            PushDevice(user_id="u2", device_token="c"),
        ]
    )
    db.commit()

    assert sorted(push.device_tokens_for(db, "u1")) == ["a", "b"]
