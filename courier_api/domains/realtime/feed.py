"""
Change feed abstraction.

Writers publish a ChangeEvent after their transaction commits; subscribers
register per table (optionally with a row predicate) and receive events
synchronously on the publishing thread. The transport is swappable: anything
implementing `ChangeFeed` (a Postgres LISTEN/NOTIFY bridge, a hosted realtime
channel) can stand in for the in-process implementation below.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE", "DELETE"]
EVENT_TYPES: tuple[str, ...] = ("INSERT", "UPDATE", "DELETE")

Row = dict[str, Any]
Callback = Callable[["ChangeEvent"], None]
Predicate = Callable[[Row], bool]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: EventType
    new: Row = field(default_factory=dict)
    old: Row = field(default_factory=dict)

    @property
    def row(self) -> Row:
        return self.new or self.old


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class ChangeFeed(Protocol):
    def subscribe(self, table: str, callback: Callback, predicate: Predicate | None = None) -> Subscription: ...

    def publish(self, event: ChangeEvent) -> None: ...


@dataclass
class _Subscription:
    feed: "InProcessChangeFeed"
    id: str
    table: str
    callback: Callback
    predicate: Predicate | None = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table and self.table != "*":
            return False
        if self.predicate is None:
            return True
        return bool(self.predicate(event.row))

    def unsubscribe(self) -> None:
        self.feed._remove(self.id)


class InProcessChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[str, _Subscription] = {}

    def subscribe(self, table: str, callback: Callback, predicate: Predicate | None = None) -> _Subscription:
        sub = _Subscription(feed=self, id=str(uuid.uuid4()), table=table, callback=callback, predicate=predicate)
        with self._lock:
            self._subs[sub.id] = sub
        return sub

    def _remove(self, sub_id: str) -> None:
        with self._lock:
            self._subs.pop(sub_id, None)

    def publish(self, event: ChangeEvent) -> None:
        if event.event not in EVENT_TYPES:
            raise ValueError(f"Unknown change event type: {event.event}")
        with self._lock:
            targets = [s for s in self._subs.values() if s.matches(event)]
        for sub in targets:
            try:
                sub.callback(event)
            except Exception:
                # One broken subscriber must not starve the others.
                logger.warning("change feed subscriber failed table=%s event=%s", event.table, event.event, exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)


# Process-wide feed the services publish into.
change_feed = InProcessChangeFeed()


def publish_change(table: str, event: EventType, new: Row | None = None, old: Row | None = None) -> None:
    change_feed.publish(ChangeEvent(table=table, event=event, new=new or {}, old=old or {}))
