"""
Payment gateway backed by Stripe Checkout.

Stripe objects are converted to plain dataclasses at this boundary so the
rest of the service never touches the SDK types.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import stripe

from tulemar.db import models
from tulemar.services.workflow_errors import PaymentProviderError, PaymentVerificationError
from tulemar.utils.pricing import to_cents, to_money

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass
class WebhookEvent:
    type: str
    session: Optional[CheckoutSession] = None


def _session_from_stripe(obj: Any) -> CheckoutSession:
    metadata = getattr(obj, "metadata", None)
    order_id = getattr(metadata, "order_id", None) if metadata is not None else None
    payment_intent = getattr(obj, "payment_intent", None)
    # Expanded payment intents come back as objects
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = getattr(payment_intent, "id", None)
    return CheckoutSession(
        id=obj.id,
        url=getattr(obj, "url", None),
        payment_status=getattr(obj, "payment_status", None),
        payment_intent=payment_intent,
        metadata={"order_id": order_id} if order_id else {},
    )


class PaymentGateway:
    """Thin wrapper over the ``stripe`` SDK."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None, currency: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.getenv("STRIPE_SECRET_KEY", "")
        self.webhook_secret = webhook_secret if webhook_secret is not None else os.getenv("STRIPE_WEBHOOK_SECRET", "")
        self.currency = (currency or os.getenv("PAYMENT_CURRENCY", "usd")).lower()

    def _configure(self) -> None:
        if not self.api_key:
            raise PaymentProviderError("Payment provider is not configured")
        stripe.api_key = self.api_key

    def build_line_items(self, order: models.Order, items: Iterable[models.OrderItem]) -> List[Dict[str, Any]]:
        """Checkout line items in minor units; fee and tax are separate lines."""
        line_items = [
            {
                "quantity": item.quantity,
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": to_cents(item.unit_price),
                    "product_data": {"name": item.product_name or "Item"},
                },
            }
            for item in items
        ]
        for name, amount in (("Delivery Fee", order.delivery_fee), ("Tax", order.tax_amount)):
            if amount is not None and to_money(amount) > 0:
                line_items.append({
                    "quantity": 1,
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": to_cents(amount),
                        "product_data": {"name": name},
                    },
                })
        return line_items

    def create_checkout_session(
        self,
        order: models.Order,
        items: Iterable[models.OrderItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        self._configure()
        metadata = {"order_id": str(order.id)}
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=order.customer_email,
                line_items=self.build_line_items(order, items),
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.exception("stripe_checkout_create_failed order_id=%s", order.id)
            raise PaymentProviderError(f"Could not create checkout session: {e.user_message or e}")
        logger.info("stripe_checkout_created order_id=%s session_id=%s", order.id, session.id)
        return _session_from_stripe(session)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        self._configure()
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.InvalidRequestError as e:
            raise PaymentVerificationError(f"Unknown checkout session: {session_id}") from e
        except stripe.StripeError as e:
            logger.exception("stripe_session_retrieve_failed session_id=%s", session_id)
            raise PaymentProviderError(f"Could not retrieve checkout session: {e.user_message or e}")
        return _session_from_stripe(session)

    def construct_webhook_event(self, payload: bytes, signature: str) -> WebhookEvent:
        if not self.webhook_secret:
            raise PaymentProviderError("Webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_webhook_rejected: %s", e)
            raise PaymentVerificationError("Invalid webhook payload or signature") from e
        session = None
        if event.type.startswith("checkout.session."):
            session = _session_from_stripe(event.data.object)
        return WebhookEvent(type=event.type, session=session)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway
