import os

# Must be set before courier_api.core.config is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PUSH_API_URL"] = ""

import pytest
from fastapi.testclient import TestClient

from courier_api.core.db import Base, SessionLocal, engine
from courier_api.core.security import create_access_token
from courier_api.domains.delivery.models import DeliveryStatus, Order, RiderRequest
from courier_api.domains.realtime.feed import change_feed
from courier_api.domains.rider.models import Rider
from courier_api.main import app


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def events():
    """Every change event published while the test runs."""
    seen = []
    sub = change_feed.subscribe("*", seen.append)
    yield seen
    sub.unsubscribe()


def _add(obj):
    with SessionLocal() as s:
        s.add(obj)
        s.commit()
        s.refresh(obj)
    return obj


@pytest.fixture
def make_rider():
    def _make(user_id="rider-user-1", name="Ravi", **kw):
        kw.setdefault("is_online", True)
        return _add(Rider(user_id=user_id, name=name, **kw))

    return _make


@pytest.fixture
def make_order():
    def _make(customer_id="customer-1", status=DeliveryStatus.PLACED, **kw):
        kw.setdefault("business_id", "biz-1")
        kw.setdefault("business_name", "Dosa Point")
        kw.setdefault("items", [{"name": "Masala dosa", "qty": 2}])
        kw.setdefault("total", 240.0)
        return _add(Order(customer_id=customer_id, status=status, **kw))

    return _make


@pytest.fixture
def make_request():
    def _make(customer_id="customer-1", status=DeliveryStatus.PLACED, **kw):
        kw.setdefault("pickup_address", "12 MG Road")
        kw.setdefault("dropoff_address", "4 Church Street")
        kw.setdefault("item_description", "Documents")
        kw.setdefault("total", 120.0)
        return _add(RiderRequest(customer_id=customer_id, status=status, **kw))

    return _make


@pytest.fixture
def auth():
    def _headers(sub, role="rider", **extra):
        return {"Authorization": f"Bearer {create_access_token(sub=sub, role=role, extra=extra or None)}"}

    return _headers
