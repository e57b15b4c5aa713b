import logging
import threading
from typing import Any, Callable, Hashable, Iterable

from courier_api.domains.realtime.feed import ChangeEvent, ChangeFeed
from courier_api.domains.realtime.invalidation import keys_for, tables

logger = logging.getLogger(__name__)


def _name(key: Hashable) -> str:
    # ("my-active-deliveries", rider_id) is invalidated by "my-active-deliveries".
    return key[0] if isinstance(key, tuple) else key


class QueryCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[Hashable, Any] = {}
        self._subscriptions: list = []

    def get(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._data:
                return self._data[key]
        value = loader()
        with self._lock:
            self._data[key] = value
        return value

    def peek(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def invalidate(self, names: Iterable[str]) -> set[Hashable]:
        names = set(names)
        with self._lock:
            dropped = {k for k in self._data if _name(k) in names}
            for k in dropped:
                del self._data[k]
        if dropped:
            logger.debug("cache invalidated %s", sorted(map(str, dropped)))
        return dropped

    def handle(self, event: ChangeEvent) -> None:
        self.invalidate(keys_for(event.table, event.event))

    def bind(self, feed: ChangeFeed) -> None:
        for table in tables():
            self._subscriptions.append(feed.subscribe(table, self.handle))

    def unbind(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()
