"""
Shared fixtures: in-memory SQLite, a dict-backed Redis, and a MercadoPago API
stand-in served through httpx.MockTransport.
"""

import os

# Must be set before app.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("MERCADOPAGO_WEBHOOK_SECRET", None)

from datetime import datetime, timedelta  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.cache import AuthorizationCache, Cache  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.domain.authorization.role_store import AuthorizationRoleStore, RoleName  # noqa: E402
from app.domain.billing.mercadopago_service import MercadoPagoService  # noqa: E402
from app.models import Booking, Plan, UserRole  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, 0)
OWNER_ID = "owner-1"
CLIENT_ID = "client-1"
ADMIN_ID = "admin-1"

DEFAULT_POLICIES = [
    {"days_threshold": 7, "type": "fixed", "amount": 50},
    {"days_threshold": 3, "type": "percentage", "amount": 100},
]


class FakeRedis:
    """The subset of redis.Redis used by app.cache.Cache"""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, key):
        self.store.pop(key, None)


class FakeMercadoPago:
    """Canned MercadoPago API answers keyed by (method, path); records every request"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, payload=None, status=200):
        self.routes[(method, path)] = (status, payload)

    def add_payment(self, payment_id, status, external_reference, **extra):
        payment = {
            "id": payment_id,
            "status": status,
            "status_detail": extra.pop("status_detail", "accredited"),
            "external_reference": external_reference,
            "transaction_amount": extra.pop("transaction_amount", 100.0),
            "currency_id": extra.pop("currency_id", "ARS"),
            **extra,
        }
        self.add("GET", f"/v1/payments/{payment_id}", payment)
        return payment

    def add_preapproval(self, preapproval_id, status, external_reference):
        preapproval = {
            "id": preapproval_id,
            "status": status,
            "external_reference": external_reference,
            "payer_email": "publisher@example.com",
        }
        self.add("GET", f"/preapproval/{preapproval_id}", preapproval)
        return preapproval

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": "resource not found"})

        status, payload = self.routes[key]
        if isinstance(payload, Exception):
            raise payload
        return httpx.Response(status, json=payload)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def authorization_cache(fake_redis):
    return AuthorizationCache(Cache(client=fake_redis))


@pytest.fixture
def role_store(db_session, authorization_cache):
    return AuthorizationRoleStore(db_session, authorization_cache)


@pytest.fixture
def mercadopago():
    return FakeMercadoPago()


@pytest.fixture
def processor(mercadopago):
    return MercadoPagoService(
        access_token="TEST-token",
        base_url="https://api.mercadopago.test",
        timeout=2,
        transport=httpx.MockTransport(mercadopago.handler),
    )


@pytest.fixture
def client(db_session, authorization_cache, processor):
    from fastapi.testclient import TestClient

    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.authorization_cache = authorization_cache
    app.state.mercadopago = processor
    app.state.webhook_secret = None
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_role(db, user_id, role, assigned_by="system", is_active=True):
    assignment = UserRole(
        user_id=user_id,
        role=role.value if isinstance(role, RoleName) else role,
        is_active=is_active,
        assigned_by=assigned_by,
        assigned_at=NOW,
    )
    db.add(assignment)
    db.commit()
    return assignment


def add_plan(db, **fields):
    values = {
        "name": "Publisher",
        "price": 100.0,
        "currency": "ARS",
        "billing_cycle": "monthly",
        "features": ["10 listings"],
        "max_posts": 10,
        "max_bookings": 100,
        **fields,
    }
    plan = Plan(**values)
    db.add(plan)
    db.commit()
    return plan


def add_booking(db, status="requested", start_in_days=10, **fields):
    start = fields.pop("start_date", NOW + timedelta(days=start_in_days))
    values = {
        "post_id": "post-1",
        "client_id": CLIENT_ID,
        "owner_id": OWNER_ID,
        "status": status,
        "start_date": start,
        "end_date": start + timedelta(days=3),
        "total_amount": 500.0,
        "currency": "ARS",
        "guest_count": 2,
        "client_data": {"name": "Ana", "email": "ana@example.com"},
        "cancellation_policies": DEFAULT_POLICIES,
        **fields,
    }
    booking = Booking(**values)
    db.add(booking)
    db.commit()
    return booking
