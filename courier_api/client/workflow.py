import logging

from courier_api.client.api import CourierClient
from courier_api.client.cache import QueryCache
from courier_api.client.pending import PendingWorkPoller
from courier_api.core.errors import AlreadyClaimed, DeliveryError
from courier_api.domains.delivery.models import DeliveryKind, DeliveryStatus
from courier_api.domains.delivery.schemas import DeliveryOut
from courier_api.domains.realtime.invalidation import ACTIVE, COMPLETED, MUTATION_INVALIDATIONS, PENDING, RIDER_PROFILE

logger = logging.getLogger(__name__)


class RiderWorkflow:
    """Rider-side glue: cached read models plus claim/transition with cache upkeep."""

    def __init__(
        self,
        client: CourierClient,
        *,
        cache: QueryCache | None = None,
        poller: PendingWorkPoller | None = None,
    ) -> None:
        self.client = client
        self.cache = cache or QueryCache()
        self.poller = poller or PendingWorkPoller(client.pending)

    def pending(self) -> list[DeliveryOut]:
        return self.cache.get(PENDING, self.client.pending)

    def active(self) -> list[DeliveryOut]:
        return self.cache.get(ACTIVE, self.client.active)

    def completed(self) -> list[DeliveryOut]:
        return self.cache.get(COMPLETED, self.client.completed)

    def profile(self) -> dict:
        return self.cache.get(RIDER_PROFILE, self.client.me)

    def claim(self, kind: DeliveryKind, delivery_id: str) -> DeliveryOut:
        try:
            delivery = self.client.claim(kind, delivery_id)
        except DeliveryError as e:
            # Drop the stale entry from the rider's list right away.
            self.cache.invalidate(MUTATION_INVALIDATIONS["claim_failed"])
            self.poller.refresh()
            if isinstance(e, AlreadyClaimed):
                logger.info("delivery %s already accepted by another rider", delivery_id)
            raise
        self.cache.invalidate(MUTATION_INVALIDATIONS["claim"])
        self.poller.refresh()
        return delivery

    def transition(self, kind: DeliveryKind, delivery_id: str, status: DeliveryStatus) -> DeliveryOut:
        delivery = self.client.transition(kind, delivery_id, status)
        self.cache.invalidate(MUTATION_INVALIDATIONS["transition"])
        return delivery

    def set_online(self, is_online: bool) -> dict:
        rider = self.client.set_online(is_online)
        self.cache.invalidate(MUTATION_INVALIDATIONS["presence"])
        return rider
