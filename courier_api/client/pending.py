import logging
import threading
from typing import Callable, Iterator

import pydantic
import requests

from courier_api.core.config import settings
from courier_api.core.errors import DeliveryError
from courier_api.domains.delivery.schemas import DeliveryOut

logger = logging.getLogger(__name__)


class PendingWorkPoller:
    """
    Lazily re-evaluated list of claimable deliveries.

    Iterating yields the current list, then waits one poll interval (or until
    `refresh()`) before fetching again. A failed fetch yields the previous
    list unchanged and is retried on the next tick. Each `iter()` starts a
    fresh loop; the loop only ends after `stop()`.
    """

    def __init__(self, fetch: Callable[[], list[DeliveryOut]], *, interval: float | None = None) -> None:
        self._fetch = fetch
        self.interval = settings.pending_poll_interval_seconds if interval is None else interval
        self._refresh = threading.Event()
        self._stopped = threading.Event()
        self.latest: list[DeliveryOut] = []
        self.last_error: Exception | None = None

    def poll(self) -> list[DeliveryOut]:
        try:
            self.latest = list(self._fetch())
            self.last_error = None
        except (DeliveryError, requests.RequestException, pydantic.ValidationError) as e:
            # A malformed body is treated like any other failed tick.
            self.last_error = e
            logger.warning("pending fetch failed; keeping %s stale entries: %s", len(self.latest), e)
        return self.latest

    def refresh(self) -> None:
        self._refresh.set()

    def stop(self) -> None:
        self._stopped.set()
        self._refresh.set()

    def __iter__(self) -> Iterator[list[DeliveryOut]]:
        self._stopped.clear()
        while not self._stopped.is_set():
            self._refresh.clear()
            yield self.poll()
            self._refresh.wait(self.interval)
