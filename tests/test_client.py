"""
Rider client against the real app: error mapping, polling and the workflow glue.
"""
import pydantic
import pytest
import requests

from courier_api.client.api import CourierClient, error_from_response
from courier_api.client.pending import PendingWorkPoller
from courier_api.client.workflow import RiderWorkflow
from courier_api.core.errors import AlreadyClaimed, NotAuthorized, TransientError
from courier_api.core.security import create_access_token
from courier_api.domains.delivery.models import DeliveryKind, DeliveryStatus
from courier_api.domains.delivery.schemas import DeliveryOut
from courier_api.domains.realtime import invalidation


@pytest.fixture
def courier(client):
    def _make(user_id="rider-user-1"):
        return CourierClient("http://testserver", token=create_access_token(sub=user_id, role="rider"), http=client)

    return _make


class FakeResponse:
    def __init__(self, status_code, body=None, url="http://api/x"):
        self.status_code = status_code
        self._body = body
        self.url = url

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


def test_error_codes_map_back_to_exception_types():
    err = error_from_response(FakeResponse(409, {"detail": {"code": "ALREADY_CLAIMED", "message": "taken"}}))
    assert isinstance(err, AlreadyClaimed)
    assert err.message == "taken"


def test_server_errors_are_transient():
    err = error_from_response(FakeResponse(502))
    assert isinstance(err, TransientError)
    assert err.retryable is True


def test_other_errors_stay_http_errors():
    assert isinstance(error_from_response(FakeResponse(404, {"detail": "Delivery not found"})), requests.HTTPError)


def test_network_failure_is_transient():
    class DownHttp:
        def request(self, *args, **kwargs):
            raise requests.ConnectionError("refused")

    with pytest.raises(TransientError):
        CourierClient("http://api", http=DownHttp()).pending()


def test_client_claims_and_transitions(courier, make_rider, make_request):
    make_rider()
    req = make_request()
    api = courier()

    claimed = api.claim(DeliveryKind.RIDER_REQUEST, req.id)
    moved = api.transition("rider_request", req.id, "on_way")

    assert claimed.status == DeliveryStatus.PREPARING
    assert moved.status == DeliveryStatus.ON_WAY
    assert [d.id for d in api.active()] == [req.id]


def test_client_raises_already_claimed_for_the_loser(courier, make_rider, make_order):
    make_rider(user_id="u1")
    make_rider(user_id="u2")
    order = make_order()

    courier("u1").claim(DeliveryKind.ORDER, order.id)
    with pytest.raises(AlreadyClaimed):
        courier("u2").claim(DeliveryKind.ORDER, order.id)


def test_client_raises_not_authorized_for_foreign_delivery(courier, make_rider, make_order):
    owner = make_rider(user_id="u1")
    make_rider(user_id="u2")
    order = make_order(rider_id=owner.id, status=DeliveryStatus.ON_WAY)

    with pytest.raises(NotAuthorized):
        courier("u2").transition(DeliveryKind.ORDER, order.id, DeliveryStatus.DELIVERED)


def test_poller_keeps_last_list_on_failure():
    results = [["a"], TransientError("down"), ["b"]]

    def fetch():
        item = results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    poller = PendingWorkPoller(fetch, interval=0)

    assert poller.poll() == ["a"]
    assert poller.poll() == ["a"]
    assert isinstance(poller.last_error, TransientError)
    assert poller.poll() == ["b"]
    assert poller.last_error is None


def test_poller_survives_malformed_payload():
    """A 2xx body that does not parse keeps the previous list and the loop alive."""
    calls = []

    def fetch():
        calls.append(1)
        if len(calls) == 2:
            return [DeliveryOut.model_validate({"id": "x"})]
        return ["ok"]

    poller = PendingWorkPoller(fetch, interval=0)

    assert poller.poll() == ["ok"]
    assert poller.poll() == ["ok"]
    assert isinstance(poller.last_error, pydantic.ValidationError)

    seen = []
    for batch in poller:
        seen.append(batch)
        poller.stop()
    assert seen == [["ok"]]
    assert poller.last_error is None


def test_poller_iterates_until_stopped():
    calls = []

    def fetch():
        calls.append(1)
        return [len(calls)]

    poller = PendingWorkPoller(fetch, interval=0)
    seen = []
    for batch in poller:
        seen.append(batch)
        if len(seen) == 3:
            poller.stop()

    assert seen == [[1], [2], [3]]


def test_workflow_claim_refreshes_views(courier, make_rider, make_order):
    make_rider()
    order = make_order()
    flow = RiderWorkflow(courier(), poller=PendingWorkPoller(lambda: [], interval=0))

    assert [d.id for d in flow.pending()] == [order.id]
    flow.claim(DeliveryKind.ORDER, order.id)

    assert flow.cache.peek(invalidation.PENDING) is None
    assert flow.pending() == []
    assert [d.id for d in flow.active()] == [order.id]


def test_workflow_lost_claim_drops_stale_pending(courier, make_rider, make_order):
    make_rider(user_id="u1")
    make_rider(user_id="u2")
    order = make_order()
    loser = RiderWorkflow(courier("u2"), poller=PendingWorkPoller(lambda: [], interval=0))

    assert [d.id for d in loser.pending()] == [order.id]
    courier("u1").claim(DeliveryKind.ORDER, order.id)

    with pytest.raises(AlreadyClaimed):
        loser.claim(DeliveryKind.ORDER, order.id)
    assert loser.pending() == []


def test_workflow_transition_drops_completed(courier, make_rider, make_order):
    rider = make_rider()
    order = make_order(rider_id=rider.id, status=DeliveryStatus.ON_WAY)
    flow = RiderWorkflow(courier(), poller=PendingWorkPoller(lambda: [], interval=0))

    assert flow.completed() == []
    flow.transition(DeliveryKind.ORDER, order.id, DeliveryStatus.DELIVERED)

    assert [d.id for d in flow.completed()] == [order.id]


def test_workflow_online_toggle_drops_cached_profile(courier, make_rider):
    make_rider(is_online=False)
    flow = RiderWorkflow(courier(), poller=PendingWorkPoller(lambda: [], interval=0))

    assert flow.profile()["is_online"] is False
    flow.set_online(True)

    assert flow.cache.peek(invalidation.RIDER_PROFILE) is None
    assert flow.profile()["is_online"] is True
