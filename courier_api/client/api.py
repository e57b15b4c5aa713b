import logging

import requests

from courier_api.core.errors import ERRORS_BY_CODE, DeliveryError, TransientError
from courier_api.domains.delivery.models import DeliveryKind, DeliveryStatus
from courier_api.domains.delivery.schemas import DeliveryOut

logger = logging.getLogger(__name__)


def error_from_response(resp) -> Exception:
    """Map an API error response onto the shared error taxonomy."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict) and detail.get("code") in ERRORS_BY_CODE:
        cls = ERRORS_BY_CODE[detail["code"]]
        extra = {k: v for k, v in detail.items() if k not in ("code", "message")}
        return cls(detail.get("message"), **extra)
    if resp.status_code >= 500:
        return TransientError(f"Server error {resp.status_code}")
    return requests.HTTPError(f"{resp.status_code} error for {resp.url}: {str(detail)[:200]}", response=resp)


class CourierClient:
    """
    Thin rider-side client over the courier API.

    `http` is anything with a requests-style `request()` method; a
    `requests.Session` by default.
    """

    def __init__(self, base_url: str, *, token: str | None = None, http=None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.http = http or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, *, json: dict | None = None, params: dict | None = None):
        headers = {"accept": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        try:
            resp = self.http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(str(e)) from e
        if resp.status_code // 100 == 2:
            return resp.json()
        err = error_from_response(resp)
        if isinstance(err, DeliveryError):
            logger.info("api %s %s -> %s", method, path, err.code)
        raise err

    # Deliveries

    def pending(self) -> list[DeliveryOut]:
        return [DeliveryOut.model_validate(d) for d in self._request("GET", "/deliveries/pending")]

    def active(self) -> list[DeliveryOut]:
        return [DeliveryOut.model_validate(d) for d in self._request("GET", "/deliveries/active")]

    def completed(self) -> list[DeliveryOut]:
        return [DeliveryOut.model_validate(d) for d in self._request("GET", "/deliveries/completed")]

    def claim(self, kind: DeliveryKind, delivery_id: str) -> DeliveryOut:
        kind = DeliveryKind(kind)
        return DeliveryOut.model_validate(self._request("POST", f"/deliveries/{kind.value}/{delivery_id}/claim"))

    def transition(self, kind: DeliveryKind, delivery_id: str, status: DeliveryStatus) -> DeliveryOut:
        kind, status = DeliveryKind(kind), DeliveryStatus(status)
        data = self._request("POST", f"/deliveries/{kind.value}/{delivery_id}/status", json={"status": status.value})
        return DeliveryOut.model_validate(data)

    def cancel(self, kind: DeliveryKind, delivery_id: str) -> DeliveryOut:
        kind = DeliveryKind(kind)
        return DeliveryOut.model_validate(self._request("POST", f"/deliveries/{kind.value}/{delivery_id}/cancel"))

    # Rider presence

    def me(self) -> dict:
        return self._request("GET", "/riders/me")

    def set_online(self, is_online: bool) -> dict:
        return self._request("POST", "/riders/me/online", json={"is_online": bool(is_online)})

    def report_location(self, lat: float, lng: float) -> dict:
        return self._request("POST", "/riders/me/location", json={"lat": lat, "lng": lng})

    # Notifications

    def notifications(self, *, unread_only: bool = False) -> list[dict]:
        return self._request("GET", "/notifications", params={"unread_only": str(unread_only).lower()})
