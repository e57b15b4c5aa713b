import logging

import requests
from sqlalchemy.orm import Session

from courier_api.core.config import settings
from courier_api.domains.notifications.models import PushDevice

logger = logging.getLogger(__name__)


def push_missing_fields() -> list[str]:
    missing: list[str] = []
    if not settings.push_api_url:
        missing.append("PUSH_API_URL")
    if not settings.push_app_id:
        missing.append("PUSH_APP_ID")
    if not settings.push_api_key:
        missing.append("PUSH_API_KEY")
    return missing


def device_tokens_for(db: Session, user_id: str) -> list[str]:
    rows = db.query(PushDevice.device_token).filter(PushDevice.user_id == user_id).all()
    # de-dupe while keeping order
    out: list[str] = []
    for (token,) in rows:
        if token and token not in out:
            out.append(token)
    return out


def send_push(tokens: list[str], *, title: str, body: str, data: dict | None = None) -> bool:
    """
    Fire-and-forget push to a set of device tokens.
    Returns True if the gateway accepted the request, False otherwise.
    """
    missing = push_missing_fields()
    if missing:
        logger.info("push gateway not configured; missing=%s", ",".join(missing))
        return False
    if not tokens:
        return False

    payload = {
        "app_id": settings.push_app_id,
        "include_player_ids": tokens,
        "headings": {"en": title},
        "contents": {"en": body},
        "data": data or {},
        "priority": 10,
    }
    headers = {
        "accept": "application/json",
        "content-type": "application/json",
        "authorization": f"Basic {settings.push_api_key}",
    }
    try:
        resp = requests.post(settings.push_api_url, json=payload, headers=headers, timeout=settings.push_timeout_seconds)
        if resp.status_code // 100 == 2:
            return True
        logger.warning("push send failed: status=%s body=%s", resp.status_code, resp.text[:300])
        return False
    except requests.RequestException as e:
        logger.warning("push send exception: %s", e)
        return False


def push_to_user(db: Session, user_id: str, *, title: str, body: str, data: dict | None = None) -> bool:
    return send_push(device_tokens_for(db, user_id), title=title, body=body, data=data)
