import os
import uuid
from datetime import date
from decimal import Decimal

import pytest

# Pin the service to its local defaults before the app is imported
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.pop("DEV_MODE", None)

from fastapi.testclient import TestClient

import tulemar.db.database as db_module
from tulemar.api.main import app
from tulemar.db import models
from tulemar.db.models import Base
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import users as users_repo
from tulemar.services import order_events
from tulemar.services.order_workflow_service import Actor
from tulemar.services.payment_service import CheckoutSession, WebhookEvent
from tulemar.utils.feature_flags import refresh_feature_flag_cache
from tulemar.utils.pricing import calculate_totals, to_money


_ENV_VARS = (
    "DEV_MODE",
    "ADMIN_EMAILS",
    "STAFF_EMAILS_SHOPPER",
    "STAFF_EMAILS_DRIVER",
    "STAFF_EMAILS_CONCIERGE",
    "STAFF_EMAILS_STORE_MANAGER",
    "FEATURE_NOTIFICATIONS_ENABLED",
    "FEATURE_EMAIL_NOTIFICATIONS_ENABLED",
    "FEATURE_SMS_NOTIFICATIONS_ENABLED",
    "FEATURE_PUSH_NOTIFICATIONS_ENABLED",
    "FEATURE_WORKFLOW_AUTOMATION_ENABLED",
    "FEATURE_PAYMENTS_ENABLED",
    "ADMIN_NOTIFICATION_EMAIL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Each test starts from default configuration."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    refresh_feature_flag_cache()
    yield
    refresh_feature_flag_cache()


@pytest.fixture(autouse=True)
def _schema():
    """Fresh tables per test on the shared in-memory engine."""
    Base.metadata.create_all(bind=db_module.engine)
    yield
    Base.metadata.drop_all(bind=db_module.engine)


@pytest.fixture(autouse=True)
def _event_bus():
    order_events.get_event_bus().clear()
    yield
    order_events.get_event_bus().clear()


@pytest.fixture
def db_session(_schema):
    session = db_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def db(db_session):
    return db_session


@pytest.fixture
def client(_schema):
    return TestClient(app)


def _auth_headers(email):
    return {"x-auth-request-email": email, "x-auth-request-user": email.split("@")[0]}


@pytest.fixture
def auth_headers():
    """oauth2-proxy style identity headers for an email."""
    return _auth_headers


@pytest.fixture
def actor_for():
    def _actor(user):
        return Actor(id=user.id, roles=frozenset(user.role_names), email=user.email)

    return _actor


# === Factories ===

@pytest.fixture
def make_user(db_session):
    def _make(email=None, roles=("client",), display_name=None, phone=None):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        user = models.User(email=email, display_name=display_name or email.split("@")[0], phone=phone)
        db_session.add(user)
        db_session.flush()
        users_repo.add_roles(db_session, user, roles, commit=True)
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@tulemar.shop", roles=("client", "admin"), display_name="Ana Admin")


@pytest.fixture
def shopper(make_user):
    return make_user("shopper@tulemar.shop", roles=("client", "shopper"), display_name="Sam Shopper")


@pytest.fixture
def driver(make_user):
    return make_user("driver@tulemar.shop", roles=("client", "driver"), display_name="Dee Driver", phone="+50688880000")


@pytest.fixture
def concierge(make_user):
    return make_user("concierge@tulemar.shop", roles=("client", "concierge"), display_name="Cam Concierge")


@pytest.fixture
def make_product(db_session):
    def _make(name="Pineapple", price="4.50", is_active=True, category=None, description=None):
        product = models.Product(
            name=name,
            price=Decimal(price),
            is_active=is_active,
            category_id=category.id if category else None,
            description=description,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_category(db_session):
    def _make(name="Produce", sort_order=0, is_active=True):
        category = models.Category(name=name, sort_order=sort_order, is_active=is_active)
        db_session.add(category)
        db_session.commit()
        db_session.refresh(category)
        return category

    return _make


@pytest.fixture
def make_order(db_session, make_product):
    def _make(
        status="placed",
        payment_status="completed",
        customer_email="guest@example.com",
        items=None,
        item_status="pending",
        **fields,
    ):
        if items is None:
            items = [(make_product("Coffee", "12.00"), 2), (make_product("Mango", "1.50"), 4)]
        lines = [(to_money(p.price), qty) for p, qty in items]
        totals = calculate_totals(lines)
        order = models.Order(
            customer_name=fields.pop("customer_name", "Gina Guest"),
            customer_email=customer_email,
            customer_phone=fields.pop("customer_phone", "+50611112222"),
            property_address=fields.pop("property_address", "Villa 7, Manuel Antonio"),
            arrival_date=fields.pop("arrival_date", date(2026, 12, 20)),
            guest_count=fields.pop("guest_count", 4),
            status=status,
            payment_status=payment_status,
            access_token=uuid.uuid4().hex,
            **totals,
            **fields,
        )
        for product, qty in items:
            price = to_money(product.price)
            order.items.append(models.OrderItem(
                product_id=product.id,
                quantity=qty,
                unit_price=price,
                total_price=to_money(price * qty),
                shopping_status=item_status,
            ))
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def assign(db_session):
    def _assign(order, user, role, status="accepted"):
        assignments_repo.upsert_assignment(
            db_session, order_id=order.id, user_id=user.id, role=role, status=status, accepted=True,
        )
        setattr(order, f"assigned_{role}_id", user.id)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _assign


# === Payment gateway double ===

class FakeGateway:
    """In-memory stand-in for the Stripe-backed gateway."""

    def __init__(self):
        self.sessions = {}
        self.created = []
        self.fail_create = None
        self.next_event = None

    def create_checkout_session(self, order, items, success_url, cancel_url):
        if self.fail_create is not None:
            raise self.fail_create
        session = CheckoutSession(
            id=f"cs_test_{uuid.uuid4().hex[:12]}",
            url=f"https://checkout.stripe.test/{order.id}",
            payment_status="unpaid",
            metadata={"order_id": str(order.id)},
        )
        self.sessions[session.id] = session
        self.created.append({"order_id": order.id, "items": list(items), "success_url": success_url, "cancel_url": cancel_url})
        return session

    def retrieve_session(self, session_id):
        return self.sessions[session_id]

    def mark(self, session_id, payment_status, payment_intent="pi_test_123"):
        session = self.sessions[session_id]
        session.payment_status = payment_status
        session.payment_intent = payment_intent if payment_status == "paid" else None
        return session

    def construct_webhook_event(self, payload, signature):
        return self.next_event


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def patched_gateway(monkeypatch, gateway):
    monkeypatch.setattr("tulemar.services.checkout_service.get_payment_gateway", lambda: gateway)
    return gateway


@pytest.fixture
def webhook_event():
    def _make(event_type, session):
        return WebhookEvent(type=event_type, session=session)

    return _make
