import time
from dataclasses import dataclass
from typing import Literal

import jwt

from courier_api.core.config import settings


Role = Literal["customer", "business", "rider", "admin"]
ROLES: tuple[str, ...] = ("customer", "business", "rider", "admin")


def _now_s() -> int:
    return int(time.time())


def create_access_token(*, sub: str, role: Role, extra: dict | None = None) -> str:
    now = _now_s()
    payload = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + settings.access_token_ttl_seconds,
        "sub": sub,
        "role": role,
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


@dataclass(frozen=True)
class Principal:
    sub: str
    role: Role
    business_id: str | None = None


def decode_bearer_token(token: str) -> Principal:
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )
    role = payload.get("role", "customer")
    if role not in ROLES:
        role = "customer"
    business_id = payload.get("business_id")
    return Principal(
        sub=str(payload["sub"]),
        role=role,
        business_id=str(business_id) if business_id is not None else None,
    )
