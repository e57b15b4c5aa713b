from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from courier_api.core.db import SessionLocal
from courier_api.core.errors import ValidationError
from courier_api.core.security import Principal, decode_bearer_token
from courier_api.domains.rider.models import Rider
from courier_api.domains.rider.service import find_rider_by_user


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal(request: Request) -> Principal:
    auth = request.headers.get("authorization") or ""
    prefix = "bearer "
    if not auth.lower().startswith(prefix):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth[len(prefix) :].strip()
    try:
        return decode_bearer_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def require_rider(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != "rider":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Rider role required")
    return principal


def current_rider(principal: Principal = Depends(require_rider), db: Session = Depends(get_db)) -> Rider:
    rider = find_rider_by_user(db, principal.sub)
    if rider is None:
        # Fails before any write is attempted.
        raise ValidationError("Rider profile not found")
    return rider


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return principal


def require_roles(allowed: set[str]):
    def _inner(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return _inner
