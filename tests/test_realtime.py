"""
Change feed and the cache-invalidation table.
"""
import pytest

from courier_api.client.cache import QueryCache
from courier_api.domains.delivery.models import DeliveryKind
from courier_api.domains.delivery.service import claim_delivery
from courier_api.domains.realtime import invalidation
from courier_api.domains.realtime.feed import ChangeEvent, InProcessChangeFeed, change_feed


def test_subscriber_receives_matching_table_only():
    feed = InProcessChangeFeed()
    got = []
    feed.subscribe("orders", got.append)

    feed.publish(ChangeEvent(table="orders", event="INSERT", new={"id": "o1"}))
    feed.publish(ChangeEvent(table="riders", event="UPDATE", new={"id": "r1"}))

    assert [e.row["id"] for e in got] == ["o1"]


def test_predicate_filters_rows():
    feed = InProcessChangeFeed()
    got = []
    feed.subscribe("notifications", got.append, predicate=lambda row: row.get("user_id") == "me")

    feed.publish(ChangeEvent(table="notifications", event="INSERT", new={"user_id": "me"}))
    feed.publish(ChangeEvent(table="notifications", event="INSERT", new={"user_id": "you"}))

    assert len(got) == 1


def test_delete_events_expose_old_row():
    event = ChangeEvent(table="riders", event="DELETE", old={"id": "r1"})
    assert event.row == {"id": "r1"}


def test_unsubscribe_stops_delivery():
    feed = InProcessChangeFeed()
    got = []
    sub = feed.subscribe("orders", got.append)
    assert len(feed) == 1
    sub.unsubscribe()

    feed.publish(ChangeEvent(table="orders", event="UPDATE"))

    assert got == []
    assert len(feed) == 0


def test_broken_subscriber_does_not_starve_others():
    feed = InProcessChangeFeed()
    got = []

    def broken(event):
        raise RuntimeError("boom")

    feed.subscribe("orders", broken)
    feed.subscribe("orders", got.append)
    feed.publish(ChangeEvent(table="orders", event="UPDATE"))

    assert len(got) == 1


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError):
        InProcessChangeFeed().publish(ChangeEvent(table="orders", event="TRUNCATE"))


def test_every_table_event_has_keys():
    for table in invalidation.tables():
        for event in ("INSERT", "UPDATE", "DELETE"):
            assert invalidation.keys_for(table, event)


def test_order_changes_drop_rider_views():
    keys = invalidation.keys_for("orders", "UPDATE")
    assert {invalidation.PENDING, invalidation.ACTIVE, invalidation.BUSINESS_ORDERS} <= keys


def test_rider_delete_also_drops_admin_stats():
    assert invalidation.ADMIN_STATS in invalidation.keys_for("riders", "DELETE")
    assert invalidation.ADMIN_STATS not in invalidation.keys_for("riders", "UPDATE")


def test_unknown_table_invalidates_nothing():
    assert invalidation.keys_for("chat_messages", "INSERT") == frozenset()


def test_cache_invalidates_by_key_name():
    cache = QueryCache()
    cache.get(invalidation.PENDING, lambda: ["a"])
    cache.get((invalidation.ACTIVE, "rider-1"), lambda: ["b"])
    cache.get(invalidation.NOTIFICATIONS, lambda: ["c"])

    dropped = cache.invalidate({invalidation.PENDING, invalidation.ACTIVE})

    assert dropped == {invalidation.PENDING, (invalidation.ACTIVE, "rider-1")}
    assert cache.peek(invalidation.NOTIFICATIONS) == ["c"]


def test_cache_serves_until_invalidated():
    cache = QueryCache()
    calls = []

    def load():
        calls.append(1)
        return len(calls)

    assert cache.get("k", load) == 1
    assert cache.get("k", load) == 1
    cache.invalidate(["k"])
    assert cache.get("k", load) == 2


def test_bound_cache_drops_pending_when_a_delivery_is_claimed(make_rider, make_order, db):
    """A claim published on the process feed evicts the pending list."""
    cache = QueryCache()
    cache.get(invalidation.PENDING, lambda: ["stale"])
    cache.bind(change_feed)
    try:
        claim_delivery(db, kind=DeliveryKind.ORDER, delivery_id=make_order().id, rider=make_rider())
    finally:
        cache.unbind()

    assert cache.peek(invalidation.PENDING) is None
