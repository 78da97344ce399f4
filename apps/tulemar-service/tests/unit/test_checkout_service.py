import uuid
from decimal import Decimal

import pytest

from tulemar.db import schemas
from tulemar.db.models import Order, OrderNotification, OrderWorkflowLog
from tulemar.services.checkout_service import CheckoutService
from tulemar.services.payment_service import CheckoutSession
from tulemar.services.workflow_errors import (
    InvalidParametersError,
    OrderNotFoundError,
    PaymentProviderError,
    PaymentVerificationError,
)


def _request(*lines, **overrides):
    payload = {
        "customer_name": " Gina Guest ",
        "customer_email": "Gina@Example.com",
        "customer_phone": "+50611112222",
        "property_address": "Villa 7",
        "guest_count": 2,
        "items": [{"product_id": str(p.id), "quantity": q} for p, q in lines],
    }
    payload.update(overrides)
    return schemas.CheckoutRequest(**payload)


def test_create_checkout_prices_from_catalog(db_session, make_product, gateway):
    coffee = make_product("Coffee", "12.00")
    mango = make_product("Mango", "1.50")

    result = CheckoutService(db_session, gateway=gateway).create_checkout(_request((coffee, 1), (mango, 4), (coffee, 1)))

    order = db_session.get(Order, result["order_id"])
    assert result["url"].startswith("https://checkout.stripe.test/")
    assert result["access_token"] == order.access_token
    assert (order.status, order.payment_status) == ("placed", "pending")
    assert order.customer_name == "Gina Guest"
    assert order.customer_email == "gina@example.com"
    assert order.subtotal == Decimal("30.00")
    assert order.total_amount == Decimal("38.90")
    assert sorted((i.product_name, i.quantity) for i in order.items) == [("Coffee", 2), ("Mango", 4)]
    assert order.stripe_session_id in gateway.sessions
    assert "{CHECKOUT_SESSION_ID}" in gateway.created[0]["success_url"]
    log = db_session.query(OrderWorkflowLog).filter_by(order_id=order.id).one()
    assert log.action == "order_created"


def test_create_checkout_rejects_inactive_product(db_session, make_product, gateway):
    retired = make_product("Retired", "3.00", is_active=False)
    with pytest.raises(InvalidParametersError):
        CheckoutService(db_session, gateway=gateway).create_checkout(_request((retired, 1)))
    assert db_session.query(Order).count() == 0


def test_provider_failure_leaves_no_order(db_session, make_product, gateway):
    gateway.fail_create = PaymentProviderError("Stripe unavailable")
    with pytest.raises(PaymentProviderError):
        CheckoutService(db_session, gateway=gateway).create_checkout(_request((make_product(), 1)))
    assert db_session.query(Order).count() == 0


def test_payments_disabled(monkeypatch, db_session, make_product, gateway):
    from tulemar.utils.feature_flags import refresh_feature_flag_cache

    monkeypatch.setenv("FEATURE_PAYMENTS_ENABLED", "false")
    refresh_feature_flag_cache()
    with pytest.raises(PaymentProviderError):
        CheckoutService(db_session, gateway=gateway).create_checkout(_request((make_product(), 1)))


def test_checkout_request_validation():
    with pytest.raises(ValueError):
        schemas.CheckoutRequest(customer_name="A", customer_email="not-an-email", items=[{"product_id": str(uuid.uuid4()), "quantity": 1}])
    with pytest.raises(ValueError):
        schemas.CheckoutRequest(customer_name="A", customer_email="a@b.co", items=[])
    with pytest.raises(ValueError):
        schemas.CheckoutRequest(
            customer_name="A",
            customer_email="a@b.co",
            arrival_date="2026-12-20",
            departure_date="2026-12-10",
            items=[{"product_id": str(uuid.uuid4()), "quantity": 1}],
        )


def _placed_order(db_session, make_product, gateway):
    result = CheckoutService(db_session, gateway=gateway).create_checkout(_request((make_product("Coffee", "12.00"), 2)))
    return db_session.get(Order, result["order_id"])


def test_verify_paid_session_completes_payment(db_session, make_product, gateway):
    order = _placed_order(db_session, make_product, gateway)
    gateway.mark(order.stripe_session_id, "paid", payment_intent="pi_42")

    result = CheckoutService(db_session, gateway=gateway).verify_payment(order.stripe_session_id, order.id)

    assert result == {"success": True, "order_id": order.id, "payment_status": "completed", "order_status": "placed"}
    db_session.refresh(order)
    assert order.payment_intent_id == "pi_42"
    assert db_session.query(OrderWorkflowLog).filter_by(order_id=order.id, action="payment_completed").count() == 1
    confirmations = db_session.query(OrderNotification).filter_by(order_id=order.id, notification_type="order_confirmed").all()
    assert {n.recipient_identifier for n in confirmations} == {"gina@example.com", "admin@system"}


def test_verify_is_idempotent(db_session, make_product, gateway):
    order = _placed_order(db_session, make_product, gateway)
    gateway.mark(order.stripe_session_id, "paid")
    service = CheckoutService(db_session, gateway=gateway)

    service.verify_payment(order.stripe_session_id, order.id)
    again = service.verify_payment(order.stripe_session_id, order.id)

    assert again["payment_status"] == "completed"
    assert db_session.query(OrderWorkflowLog).filter_by(order_id=order.id, action="payment_completed").count() == 1
    assert db_session.query(OrderNotification).filter_by(order_id=order.id, notification_type="order_confirmed").count() == 2


def test_verify_unpaid_session_cancels_order(db_session, make_product, gateway):
    order = _placed_order(db_session, make_product, gateway)
    gateway.mark(order.stripe_session_id, "unpaid")

    result = CheckoutService(db_session, gateway=gateway).verify_payment(order.stripe_session_id, order.id)

    assert result["success"] is False
    assert (result["payment_status"], result["order_status"]) == ("failed", "canceled")
    actions = {row.action for row in db_session.query(OrderWorkflowLog).filter_by(order_id=order.id)}
    assert {"cancel_order", "payment_failed"} <= actions


def test_verify_rejects_foreign_session(db_session, make_product, gateway):
    order = _placed_order(db_session, make_product, gateway)
    other = _placed_order(db_session, make_product, gateway)
    service = CheckoutService(db_session, gateway=gateway)

    with pytest.raises(PaymentVerificationError):
        service.verify_payment(other.stripe_session_id, order.id)

    # Session ids match but the provider metadata points elsewhere
    gateway.sessions[order.stripe_session_id].metadata = {"order_id": str(other.id)}
    with pytest.raises(PaymentVerificationError):
        service.verify_payment(order.stripe_session_id, order.id)


def test_verify_unknown_order(db_session, gateway):
    with pytest.raises(OrderNotFoundError):
        CheckoutService(db_session, gateway=gateway).verify_payment("cs_x", uuid.uuid4())


def test_webhook_completed_settles_order(db_session, make_product, gateway, webhook_event):
    order = _placed_order(db_session, make_product, gateway)
    session = gateway.mark(order.stripe_session_id, "paid")
    gateway.next_event = webhook_event("checkout.session.completed", session)

    result = CheckoutService(db_session, gateway=gateway).handle_webhook(b"{}", "sig")

    assert result["handled"] is True
    assert result["payment_status"] == "completed"


def test_webhook_falls_back_to_stored_session_id(db_session, make_product, gateway, webhook_event):
    order = _placed_order(db_session, make_product, gateway)
    session = gateway.mark(order.stripe_session_id, "paid")
    session.metadata = {}
    gateway.next_event = webhook_event("checkout.session.completed", session)

    result = CheckoutService(db_session, gateway=gateway).handle_webhook(b"{}", "sig")

    assert (result["handled"], result["order_id"]) == (True, order.id)

    orphan = CheckoutSession(id="cs_orphan", payment_status="paid", metadata={})
    gateway.next_event = webhook_event("checkout.session.completed", orphan)
    assert CheckoutService(db_session, gateway=gateway).handle_webhook(b"{}", "sig")["handled"] is False


def test_webhook_ignores_other_events(db_session, gateway, webhook_event):
    gateway.next_event = webhook_event("payment_intent.created", None)
    result = CheckoutService(db_session, gateway=gateway).handle_webhook(b"{}", "sig")
    assert result == {"received": True, "handled": False, "type": "payment_intent.created"}


def test_webhook_with_bad_order_id(db_session, gateway, webhook_event):
    session = CheckoutSession(id="cs_bad", payment_status="paid", metadata={"order_id": "not-a-uuid"})
    gateway.next_event = webhook_event("checkout.session.completed", session)
    with pytest.raises(PaymentVerificationError):
        CheckoutService(db_session, gateway=gateway).handle_webhook(b"{}", "sig")
