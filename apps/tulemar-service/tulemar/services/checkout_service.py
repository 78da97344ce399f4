"""
Checkout and payment verification.

Orders are created ``placed`` with payment ``pending`` and priced from the
catalog. Verification settles ``payment_status`` exactly once, whichever of
the success redirect or the provider webhook arrives first.
"""
from __future__ import annotations

import logging
import secrets
import uuid
from collections import OrderedDict
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from tulemar.db import models, schemas
from tulemar.db.repositories import catalog as catalog_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.services.notification_orchestrator import NotificationOrchestrator, NOTIFY_ORDER_CONFIRMED
from tulemar.services.order_workflow_service import SYSTEM_ACTOR, OrderWorkflowService
from tulemar.services.payment_service import PaymentGateway, get_payment_gateway
from tulemar.services import workflow_automation
from tulemar.services.workflow_errors import (
    InvalidParametersError,
    OrderNotFoundError,
    PaymentProviderError,
    PaymentVerificationError,
    WorkflowError,
)
from tulemar.utils.feature_flags import payments_enabled
from tulemar.utils.order_status import OrderStatus, is_terminal
from tulemar.utils.pricing import calculate_totals, to_money
from tulemar.utils.urls import build_checkout_cancel_url, build_checkout_success_url
from tulemar import workflow_log
from tulemar.workflow_log import WorkflowAction, WorkflowPhase

logger = logging.getLogger(__name__)

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"

HANDLED_WEBHOOK_EVENTS = ("checkout.session.completed", "checkout.session.expired")


class CheckoutService:
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[NotificationOrchestrator] = None,
    ):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier or NotificationOrchestrator(db)

    def create_checkout(self, payload: schemas.CheckoutRequest, client_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        """
        Create a ``placed`` order and a provider checkout session for it.

        Returns:
            Dict with 'url', 'order_id' and 'access_token'
        """
        if not payments_enabled():
            raise PaymentProviderError("Payments are currently disabled")

        # Repeated products collapse into one line
        quantities: "OrderedDict[uuid.UUID, int]" = OrderedDict()
        for line in payload.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        products = {p.id: p for p in catalog_repo.get_products_by_ids(self.db, quantities.keys())}
        items = []
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise InvalidParametersError(f"Product {product_id} is not available")
            unit_price = to_money(product.price)
            items.append({
                "product_id": product.id,
                "quantity": quantity,
                "unit_price": unit_price,
                "total_price": to_money(unit_price * quantity),
            })

        totals = calculate_totals((i["unit_price"], i["quantity"]) for i in items)
        order_data = {
            "client_id": client_id,
            "customer_name": payload.customer_name.strip(),
            "customer_email": payload.customer_email,
            "customer_phone": payload.customer_phone,
            "property_address": payload.property_address,
            "arrival_date": payload.arrival_date,
            "departure_date": payload.departure_date,
            "guest_count": payload.guest_count,
            "dietary_restrictions": payload.dietary_restrictions,
            "special_instructions": payload.special_instructions,
            "status": OrderStatus.PLACED.value,
            "payment_status": PAYMENT_PENDING,
            "access_token": secrets.token_urlsafe(32),
            **totals,
        }

        try:
            order = orders_repo.create_order(self.db, order_data, items, commit=False)
            workflow_log.log(
                self.db,
                order_id=order.id,
                action=WorkflowAction.ORDER_CREATED,
                phase=WorkflowPhase.ORDER_CONFIRMATION,
                new_status=order.status,
                actor_id=client_id,
                actor_role="client",
                notes=f"Order placed with {len(items)} item(s)",
                metadata={"total_amount": str(totals["total_amount"])},
                commit=False,
            )
            session = self.gateway.create_checkout_session(
                order,
                order.items,
                success_url=build_checkout_success_url(str(order.id)),
                cancel_url=build_checkout_cancel_url(),
            )
            order.stripe_session_id = session.id
            self.db.commit()
        except WorkflowError:
            self.db.rollback()
            raise

        logger.info("checkout_created order_id=%s total=%s", order.id, totals["total_amount"])
        return {"url": session.url, "order_id": order.id, "access_token": order.access_token}

    def verify_payment(self, session_id: str, order_id: uuid.UUID) -> Dict[str, Any]:
        """
        Settle an order's payment from the provider session.

        Settled orders are returned as-is, so repeated calls write nothing.
        """
        order = orders_repo.get_order(self.db, order_id)
        if order is None:
            raise OrderNotFoundError()
        if order.payment_status != PAYMENT_PENDING:
            return self._result(order)
        if order.stripe_session_id and order.stripe_session_id != session_id:
            raise PaymentVerificationError("Checkout session does not belong to this order")

        session = self.gateway.retrieve_session(session_id)
        tagged_order = session.metadata.get("order_id")
        if tagged_order is None:
            # Untagged sessions must be the one stored on the order
            belongs = order.stripe_session_id == session_id
        else:
            belongs = tagged_order == str(order.id)
        if not belongs:
            raise PaymentVerificationError("Checkout session does not belong to this order")

        if session.is_paid:
            self._settle_paid(order, session)
        else:
            self._settle_failed(order, session)
        self.db.refresh(order)
        return self._result(order)

    def _settle_paid(self, order: models.Order, session) -> None:
        won = orders_repo.compare_and_set_payment_status(
            self.db, order.id, PAYMENT_PENDING, PAYMENT_COMPLETED, {"payment_intent_id": session.payment_intent},
        )
        if not won:
            self.db.rollback()
            return
        self.db.refresh(order)
        workflow_log.log_payment(
            self.db,
            order_id=order.id,
            paid=True,
            previous_status=order.status,
            new_status=order.status,
            metadata={"session_id": session.id, "payment_intent_id": session.payment_intent},
            commit=False,
        )
        # Staff picked here receive the confirmation fan-out below
        workflow_automation.run_automation(self.db, order, workflow_automation.TRIGGER_PAYMENT_CONFIRMED)
        self.db.commit()
        logger.info("payment_completed order_id=%s session_id=%s", order.id, session.id)
        self.notifier.orchestrate(order.id, NOTIFY_ORDER_CONFIRMED, phase=WorkflowPhase.ORDER_CONFIRMATION.value)

    def _settle_failed(self, order: models.Order, session) -> None:
        won = orders_repo.compare_and_set_payment_status(self.db, order.id, PAYMENT_PENDING, PAYMENT_FAILED)
        if not won:
            self.db.rollback()
            return
        previous = order.status
        workflow = OrderWorkflowService(self.db, notifier=self.notifier)
        try:
            if not is_terminal(previous):
                workflow.apply_transition(
                    order,
                    OrderStatus.CANCELED.value,
                    previous,
                    SYSTEM_ACTOR,
                    action=WorkflowAction.CANCEL_ORDER,
                    notes="Payment not completed",
                )
            workflow_log.log_payment(
                self.db,
                order_id=order.id,
                paid=False,
                previous_status=previous,
                new_status=order.status,
                metadata={"session_id": session.id, "provider_payment_status": session.payment_status},
                commit=False,
            )
            workflow.commit()
        except WorkflowError:
            self.db.rollback()
            raise
        logger.warning("payment_failed order_id=%s session_id=%s status=%s", order.id, session.id, session.payment_status)

    def handle_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        event = self.gateway.construct_webhook_event(payload, signature)
        if event.type not in HANDLED_WEBHOOK_EVENTS or event.session is None:
            return {"received": True, "handled": False, "type": event.type}
        order_id = event.session.metadata.get("order_id")
        if not order_id:
            # Sessions created outside checkout carry no metadata
            order = orders_repo.get_order_by_session_id(self.db, event.session.id)
            if order is None:
                logger.warning("stripe_webhook_without_order session_id=%s", event.session.id)
                return {"received": True, "handled": False, "type": event.type}
            order_id = str(order.id)
        try:
            order_uuid = uuid.UUID(order_id)
        except ValueError:
            raise PaymentVerificationError(f"Invalid order id in session metadata: {order_id}")
        result = self.verify_payment(event.session.id, order_uuid)
        return {"received": True, "handled": True, "type": event.type, **result}

    @staticmethod
    def _result(order: models.Order) -> Dict[str, Any]:
        return {
            "success": order.payment_status == PAYMENT_COMPLETED,
            "order_id": order.id,
            "payment_status": order.payment_status,
            "order_status": order.status,
        }
