import logging
import threading
import time
from typing import Callable

import requests

from courier_api.core.config import settings
from courier_api.core.errors import DeliveryError

logger = logging.getLogger(__name__)

LocationSource = Callable[[], "tuple[float, float] | None"]


class PresenceReporter:
    """
    Keeps the rider's online flag and location current.

    While online a background thread samples `location_source` every
    `interval` seconds. Sensor callbacks can also push positions through
    `on_position`; either way at most one location write goes out per interval.
    """

    def __init__(
        self,
        client,
        location_source: LocationSource | None = None,
        *,
        interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.location_source = location_source
        self.interval = settings.presence_interval_seconds if interval is None else interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_write: float | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.online = False

    def go_online(self, *, sample: bool = True) -> None:
        self.client.set_online(True)
        self.online = True
        if sample and self.location_source is not None and not (self._thread and self._thread.is_alive()):
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="presence-reporter", daemon=True)
            self._thread.start()

    def go_offline(self) -> None:
        # Last known location stays on the rider row.
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)
        self._thread = None
        self.online = False
        self.client.set_online(False)

    def on_position(self, lat: float, lng: float) -> bool:
        """Returns True if this position was written."""
        if not self.online:
            return False
        with self._lock:
            now = self._clock()
            if self._last_write is not None and now - self._last_write < self.interval:
                return False
            self._last_write = now
        try:
            self.client.report_location(lat, lng)
        except (DeliveryError, requests.RequestException) as e:
            logger.warning("location update failed: %s", e)
            return False
        return True

    def sample(self) -> bool:
        if self.location_source is None:
            return False
        position = self.location_source()
        if position is None:
            return False
        return self.on_position(*position)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.sample()
            except Exception:
                logger.warning("location sampling failed", exc_info=True)
            self._stop.wait(self.interval)
