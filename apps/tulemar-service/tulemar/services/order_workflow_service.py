"""
Order workflow service: guarded status transitions and the staff actions
that drive an order from ``placed`` to ``closed``.

Every status change is a compare-and-set on ``orders.status``; the workflow
log row, event and notifications are written in the same transaction and
only committed if the transition won. Order events are published on the
in-process bus after commit.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.services import order_events, workflow_automation
from tulemar.services.notification_orchestrator import (
    NotificationOrchestrator,
    NOTIFY_DELIVERED,
    NOTIFY_ITEMS_PACKED,
    NOTIFY_OUT_FOR_DELIVERY,
    NOTIFY_SHOPPING_STARTED,
    NOTIFY_SUBSTITUTION_APPROVED,
    NOTIFY_SUBSTITUTION_NEEDED,
    NOTIFY_SUBSTITUTION_REJECTED,
)
from tulemar.services.workflow_errors import (
    BusinessRuleError,
    ForbiddenActionError,
    IllegalTransitionError,
    InvalidParametersError,
    ItemNotFoundError,
    OrderNotFoundError,
    StaleWriteError,
    WorkflowError,
)
from tulemar.utils.order_status import OrderStatus, is_known_status, is_legal_transition
from tulemar.utils.roles import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_CONCIERGE,
    ROLE_DRIVER,
    ROLE_SHOPPER,
    ROLE_STORE_MANAGER,
    ROLE_SYSADMIN,
    is_admin_role,
    roles_allow,
)
from tulemar import workflow_log
from tulemar.workflow_log import WorkflowAction, WorkflowPhase

logger = logging.getLogger(__name__)

SYSTEM_ROLE = "system"

_ROLE_PRECEDENCE = (SYSTEM_ROLE, ROLE_SYSADMIN, ROLE_ADMIN, ROLE_STORE_MANAGER, ROLE_SHOPPER, ROLE_DRIVER, ROLE_CONCIERGE, ROLE_CLIENT)

# Columns stamped when an order enters a status
_STATUS_TIMESTAMPS = {
    OrderStatus.SHOPPING.value: "shopping_started_at",
    OrderStatus.READY.value: "shopping_completed_at",
    OrderStatus.DELIVERED.value: "delivery_completed_at",
}

# Who besides an admin may move an order into a status directly
_TRANSITION_ASSIGNEES = {
    OrderStatus.SHOPPING.value: ("assigned_shopper_id",),
    OrderStatus.READY.value: ("assigned_shopper_id",),
    OrderStatus.DELIVERED.value: ("assigned_shopper_id", "assigned_driver_id"),
}
_CLOSING_STATUSES = frozenset({OrderStatus.CLOSED.value, OrderStatus.CANCELED.value})
_NO_PENDING_ITEMS = frozenset({OrderStatus.READY.value, OrderStatus.DELIVERED.value})


@dataclass(frozen=True)
class Actor:
    """The user performing a workflow action."""
    id: Optional[uuid.UUID]
    roles: FrozenSet[str] = field(default_factory=frozenset)
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return is_admin_role(self.roles)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def primary_role(self) -> str:
        for role in _ROLE_PRECEDENCE:
            if role in self.roles:
                return role
        return ROLE_CLIENT


SYSTEM_ACTOR = Actor(id=None, roles=frozenset({SYSTEM_ROLE}))

ActionHandler = Callable[[models.Order, Actor, Dict[str, Any]], Tuple[str, str]]


class OrderWorkflowService:
    """Service class for order lifecycle operations."""

    ACTIONS = (
        "accept_order",
        "start_shopping",
        "mark_item_found",
        "mark_item_unavailable",
        "request_substitution",
        "approve_substitution",
        "decline_substitution",
        "complete_shopping",
        "start_delivery",
        "complete_delivery",
        "close_order",
        "cancel_order",
    )

    def __init__(self, db: Session, notifier: Optional[NotificationOrchestrator] = None):
        self.db = db
        self.notifier = notifier or NotificationOrchestrator(db)
        self._pending_events: List[models.OrderEvent] = []
        self._handlers: Dict[str, ActionHandler] = {name: getattr(self, f"_{name}") for name in self.ACTIONS}

    # === Guarded transition ===

    def advance_order_status(
        self,
        order_id: uuid.UUID,
        to_status: str,
        expected_status: str,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> models.Order:
        """
        Move an order from ``expected_status`` to ``to_status``.

        Staff may only move orders they work on: shoppers claim, the assigned
        shopper takes the order through shopping and delivery (the assigned
        driver may also deliver), and closing or cancelling is left to admins.

        Raises:
            InvalidParametersError: unknown status values
            OrderNotFoundError: no such order
            ForbiddenActionError: the actor may not make this change
            BusinessRuleError: claimed by another shopper, or items still pending
            IllegalTransitionError: the transition is not in the table
            StaleWriteError: the order no longer has ``expected_status``
        """
        to_status = getattr(to_status, "value", to_status)
        expected_status = getattr(expected_status, "value", expected_status)
        if not is_known_status(to_status) or not is_known_status(expected_status):
            raise InvalidParametersError("to_status and expected_status must be valid order statuses")
        order = orders_repo.get_order(self.db, order_id)
        if order is None:
            raise OrderNotFoundError()
        if not is_legal_transition(expected_status, to_status):
            raise IllegalTransitionError(f"Cannot transition from {expected_status} to {to_status}")
        self._check_transition_rules(order, to_status, actor)
        values = None
        claiming = to_status == OrderStatus.CLAIMED.value and not actor.is_admin
        if claiming:
            values = {"assigned_shopper_id": actor.id}
        try:
            self.apply_transition(order, to_status, expected_status, actor, notes=notes, values=values)
            if claiming:
                assignments_repo.upsert_assignment(
                    self.db, order_id=order.id, user_id=actor.id, role=ROLE_SHOPPER, status="accepted", accepted=True,
                )
            self.commit()
        except WorkflowError:
            self.db.rollback()
            self._pending_events.clear()
            raise
        self.db.refresh(order)
        return order

    def _check_transition_rules(self, order: models.Order, to_status: str, actor: Actor) -> None:
        if not roles_allow(actor.roles, "can_work_orders"):
            raise ForbiddenActionError("Only staff can change an order's status")
        if to_status == OrderStatus.CLAIMED.value:
            if not (actor.has_role(ROLE_SHOPPER) or actor.is_admin):
                raise ForbiddenActionError("Only shoppers can accept orders")
            if order.assigned_shopper_id and order.assigned_shopper_id != actor.id:
                raise BusinessRuleError("Order is already assigned to another shopper")
        elif to_status in _CLOSING_STATUSES:
            if not actor.is_admin:
                raise ForbiddenActionError(f"Only admins can move an order to {to_status}")
        else:
            columns = _TRANSITION_ASSIGNEES.get(to_status, ("assigned_shopper_id",))
            self._require_assigned(order, actor, columns, "Only the assigned shopper can perform this action")
        if to_status in _NO_PENDING_ITEMS:
            self._require_no_pending_items(order, f"Cannot move to {to_status}")

    def apply_transition(
        self,
        order: models.Order,
        to_status: str,
        expected_status: str,
        actor: Actor,
        action: WorkflowAction | str = WorkflowAction.STATUS_CHANGED,
        notes: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Apply a transition inside the current transaction. Does not commit."""
        if not is_legal_transition(expected_status, to_status):
            raise IllegalTransitionError(f"Cannot transition from {expected_status} to {to_status}")

        stamped = dict(values or {})
        ts_column = _STATUS_TIMESTAMPS.get(to_status)
        if ts_column:
            stamped.setdefault(ts_column, now_utc())
        if not orders_repo.compare_and_set_status(self.db, order.id, expected_status, to_status, stamped):
            raise StaleWriteError(f"Order {order.id} is no longer '{expected_status}'")
        self.db.refresh(order)

        workflow_log.log_transition(
            self.db,
            order_id=order.id,
            previous_status=expected_status,
            new_status=to_status,
            action=action,
            actor_id=actor.id,
            actor_role=actor.primary_role,
            notes=notes,
            metadata=metadata,
            commit=False,
        )
        self.record_event(order, order_events.EVENT_STATUS_CHANGED, actor, {"from": expected_status, "to": to_status})
        self.notifier.notify_status_change(order, to_status)
        if to_status == OrderStatus.DELIVERED.value:
            workflow_automation.run_automation(self.db, order, workflow_automation.TRIGGER_DELIVERED)
        logger.info("order_status_changed order_id=%s from=%s to=%s actor=%s", order.id, expected_status, to_status, actor.id)

    # === Actions ===

    def perform_action(self, order_id: uuid.UUID, action: str, actor: Actor, **params) -> Dict[str, Any]:
        """
        Run one workflow action and commit its effects atomically.

        A rejected action is recorded in the workflow log (phase ``audit``)
        before the error propagates.
        """
        request_id = uuid.uuid4().hex
        started = time.perf_counter()
        handler = self._handlers.get(action)
        if handler is None:
            raise InvalidParametersError(f"Unknown workflow action: {action}")
        order = orders_repo.get_order(self.db, order_id)
        if order is None:
            raise OrderNotFoundError()

        try:
            previous_status, new_status = handler(order, actor, params)
            self.commit()
        except WorkflowError as e:
            self.db.rollback()
            self._pending_events.clear()
            workflow_log.log_action_failure(
                self.db,
                order_id=order_id,
                action=action,
                error_code=e.code,
                message=e.message,
                request_id=request_id,
                actor_id=actor.id,
                actor_role=actor.primary_role,
            )
            logger.warning("workflow_action_rejected order_id=%s action=%s code=%s", order_id, action, e.code)
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info("workflow_action order_id=%s action=%s %s->%s in %sms", order_id, action, previous_status, new_status, elapsed_ms)
        return {
            "success": True,
            "action": action,
            "order_id": order_id,
            "previous_status": previous_status,
            "new_status": new_status,
            "request_id": request_id,
            "execution_time_ms": elapsed_ms,
        }

    def _accept_order(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        if not (actor.has_role(ROLE_SHOPPER) or actor.is_admin):
            raise ForbiddenActionError("Only shoppers or admins can accept orders")
        if order.assigned_shopper_id and order.assigned_shopper_id != actor.id:
            raise BusinessRuleError("Order is already assigned to another shopper")
        previous = order.status
        self.apply_transition(
            order,
            OrderStatus.CLAIMED.value,
            previous,
            actor,
            action=WorkflowAction.ACCEPT_ORDER,
            values={"assigned_shopper_id": actor.id},
        )
        assignments_repo.upsert_assignment(
            self.db, order_id=order.id, user_id=actor.id, role=ROLE_SHOPPER, status="accepted", accepted=True,
        )
        self.record_event(order, order_events.EVENT_ASSIGNED, actor, {"role": ROLE_SHOPPER, "user_id": str(actor.id)})
        return previous, order.status

    def _start_shopping(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        self._require_assigned(order, actor, ("assigned_shopper_id",), "Only the assigned shopper can start shopping")
        previous = order.status
        self.apply_transition(order, OrderStatus.SHOPPING.value, previous, actor, action=WorkflowAction.START_SHOPPING)
        self.notifier.orchestrate(order.id, NOTIFY_SHOPPING_STARTED, phase=WorkflowPhase.SHOPPING.value, commit=False)
        return previous, order.status

    def _mark_item_found(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        item = self._shopping_item(order, actor, params)
        found_quantity = params.get("found_quantity")
        if found_quantity is None:
            found_quantity = item.quantity
        if found_quantity < 0:
            raise InvalidParametersError("found_quantity must not be negative")
        item.found_quantity = found_quantity
        item.shopping_status = "found"
        if params.get("notes") is not None:
            item.shopper_notes = params["notes"]
        if params.get("photo_url") is not None:
            item.photo_url = params["photo_url"]
        self.db.flush()
        self._log_item_action(order, actor, WorkflowAction.MARK_ITEM_FOUND, item, f"Found {found_quantity} of {item.quantity}")
        self.record_event(order, order_events.EVENT_ITEM_UPDATED, actor, {
            "item_id": str(item.id),
            "item_name": item.product_name,
            "qty_picked": found_quantity,
            "quantity": item.quantity,
        })
        return order.status, order.status

    def _mark_item_unavailable(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        item = self._shopping_item(order, actor, params)
        item.found_quantity = 0
        item.shopping_status = "unavailable"
        if params.get("notes") is not None:
            item.shopper_notes = params["notes"]
        self.db.flush()
        self._log_item_action(order, actor, WorkflowAction.MARK_ITEM_UNAVAILABLE, item, "Item unavailable")
        self.record_event(order, order_events.EVENT_ITEM_UPDATED, actor, {
            "item_id": str(item.id),
            "item_name": item.product_name,
            "qty_picked": 0,
            "quantity": item.quantity,
        })
        return order.status, order.status

    def _request_substitution(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        item = self._shopping_item(order, actor, params)
        reason = (params.get("reason") or "").strip()
        if not reason:
            raise InvalidParametersError("reason is required for a substitution request")
        substitution = {
            "reason": reason,
            "suggested_product": params.get("suggested_product"),
            "notes": params.get("notes"),
            "requested_by": str(actor.id) if actor.id else None,
            "requested_at": now_utc().isoformat(),
        }
        item.shopping_status = "substitution_needed"
        item.substitution_data = substitution
        self.db.flush()
        self._log_item_action(order, actor, WorkflowAction.REQUEST_SUBSTITUTION, item, f"Substitution requested: {reason}")
        self.record_event(order, order_events.EVENT_SUBSTITUTION_SUGGESTED, actor, {
            "item_id": str(item.id),
            "item_name": item.product_name,
            "suggested_product": substitution["suggested_product"],
            "reason": reason,
        })
        self.notifier.orchestrate(
            order.id,
            NOTIFY_SUBSTITUTION_NEEDED,
            phase=WorkflowPhase.SHOPPING.value,
            metadata={"item_id": str(item.id), "reason": reason, "suggested_product": substitution["suggested_product"]},
            commit=False,
        )
        return order.status, order.status

    def _approve_substitution(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        return self._decide_substitution(order, actor, params, approved=True)

    def _decline_substitution(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        return self._decide_substitution(order, actor, params, approved=False)

    def _decide_substitution(self, order: models.Order, actor: Actor, params: Dict[str, Any], approved: bool) -> Tuple[str, str]:
        """Customer (or admin) answer to a shopper's substitution request."""
        is_customer = bool(actor.email) and actor.email == order.customer_email
        if not (is_customer or actor.is_admin):
            raise ForbiddenActionError("Only the customer or an admin can decide on a substitution")
        if order.status not in (OrderStatus.SHOPPING.value, OrderStatus.READY.value) or order.delivery_started_at is not None:
            raise BusinessRuleError("Substitutions can only be decided before delivery starts")
        item = self._order_item(order, params)
        if item.shopping_status != "substitution_needed":
            raise BusinessRuleError("Item has no pending substitution request")

        notes = params.get("notes")
        request = dict(item.substitution_data or {})
        request.update({
            "decision": "approved" if approved else "declined",
            "decided_by": str(actor.id) if actor.id else actor.email,
            "decided_at": now_utc().isoformat(),
        })
        item.substitution_data = request
        if approved:
            item.shopping_status = "substituted"
            item.shopper_notes = notes or "Substitution approved"
        else:
            item.shopping_status = "unavailable"
            item.found_quantity = 0
            item.shopper_notes = notes or "Substitution declined - item unavailable"
        self.db.flush()

        action = WorkflowAction.APPROVE_SUBSTITUTION if approved else WorkflowAction.DECLINE_SUBSTITUTION
        self._log_item_action(order, actor, action, item, item.shopper_notes)
        self.record_event(order, order_events.EVENT_SUBSTITUTION_DECISION, actor, {
            "item_id": str(item.id),
            "item_name": item.product_name,
            "approved": approved,
            "suggested_product": request.get("suggested_product"),
        })
        self.notifier.orchestrate(
            order.id,
            NOTIFY_SUBSTITUTION_APPROVED if approved else NOTIFY_SUBSTITUTION_REJECTED,
            phase=WorkflowPhase.SHOPPING.value,
            metadata={
                "item_id": str(item.id),
                "original_product": item.product_name,
                "substitute": request.get("suggested_product"),
                "reason": notes,
            },
            commit=False,
        )
        return order.status, order.status

    def _complete_shopping(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        self._require_assigned(order, actor, ("assigned_shopper_id",), "Only the assigned shopper can complete shopping")
        self._require_no_pending_items(order, "Cannot complete shopping")
        previous = order.status
        self.apply_transition(order, OrderStatus.READY.value, previous, actor, action=WorkflowAction.COMPLETE_SHOPPING)
        assignments_repo.complete_assignment(self.db, order.id, ROLE_SHOPPER)
        self.notifier.orchestrate(order.id, NOTIFY_ITEMS_PACKED, phase=WorkflowPhase.SHOPPING.value, commit=False)
        return previous, order.status

    def _start_delivery(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        is_driver = actor.has_role(ROLE_DRIVER) and order.assigned_driver_id in (None, actor.id)
        if not (actor.is_admin or is_driver or (actor.id is not None and actor.id == order.assigned_shopper_id)):
            raise ForbiddenActionError("Only the assigned shopper, a driver or an admin can start delivery")
        if order.status != OrderStatus.READY.value:
            raise BusinessRuleError("Delivery can only start once the order is ready")
        if order.delivery_started_at is not None:
            raise BusinessRuleError("Delivery has already started")
        self._require_no_pending_items(order, "Cannot start delivery")

        values: Dict[str, Any] = {"delivery_started_at": now_utc()}
        if is_driver:
            values["assigned_driver_id"] = actor.id
            assignments_repo.upsert_assignment(
                self.db, order_id=order.id, user_id=actor.id, role=ROLE_DRIVER, status="accepted", accepted=True,
            )
        orders_repo.update_order_fields(self.db, order, values, commit=False)
        workflow_log.log(
            self.db,
            order_id=order.id,
            action=WorkflowAction.START_DELIVERY,
            phase=WorkflowPhase.DELIVERY,
            previous_status=order.status,
            new_status=order.status,
            actor_id=actor.id,
            actor_role=actor.primary_role,
            notes="Out for delivery",
            commit=False,
        )
        workflow_automation.run_automation(self.db, order, workflow_automation.TRIGGER_DELIVERY_STARTED)
        self.notifier.orchestrate(order.id, NOTIFY_OUT_FOR_DELIVERY, phase=WorkflowPhase.DELIVERY.value, commit=False)
        return order.status, order.status

    def _complete_delivery(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        self._require_assigned(
            order, actor, ("assigned_driver_id", "assigned_shopper_id"), "Only the delivering staff member can complete delivery",
        )
        if order.status == OrderStatus.READY.value and order.delivery_started_at is None:
            raise BusinessRuleError("Delivery has not been started")
        previous = order.status
        self.apply_transition(order, OrderStatus.DELIVERED.value, previous, actor, action=WorkflowAction.COMPLETE_DELIVERY, notes=params.get("notes"))
        assignments_repo.complete_assignment(self.db, order.id, ROLE_DRIVER)
        self.notifier.orchestrate(order.id, NOTIFY_DELIVERED, phase=WorkflowPhase.DELIVERY.value, commit=False)
        return previous, order.status

    def _close_order(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        if not actor.is_admin:
            raise ForbiddenActionError("Only admins can close orders")
        previous = order.status
        self.apply_transition(order, OrderStatus.CLOSED.value, previous, actor, action=WorkflowAction.CLOSE_ORDER, notes=params.get("notes"))
        for assignment in assignments_repo.get_assignments_for_order(self.db, order.id, statuses=("assigned", "accepted")):
            assignments_repo.complete_assignment(self.db, order.id, assignment.role)
        return previous, order.status

    def _cancel_order(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> Tuple[str, str]:
        is_customer = bool(actor.email) and actor.email == order.customer_email
        if not actor.is_admin:
            if not is_customer:
                raise ForbiddenActionError("Only admins or the customer can cancel an order")
            if order.status != OrderStatus.PLACED.value:
                raise BusinessRuleError("Orders can only be cancelled by the customer before a shopper accepts them")
        previous = order.status
        self.apply_transition(
            order,
            OrderStatus.CANCELED.value,
            previous,
            actor,
            action=WorkflowAction.CANCEL_ORDER,
            notes=params.get("reason") or params.get("notes"),
        )
        return previous, order.status

    # === Helpers ===

    def _require_assigned(self, order: models.Order, actor: Actor, columns: Tuple[str, ...], message: str) -> None:
        if actor.is_admin:
            return
        assigned = {getattr(order, c) for c in columns} - {None}
        if actor.id is None or actor.id not in assigned:
            raise ForbiddenActionError(message)

    def _require_no_pending_items(self, order: models.Order, prefix: str) -> None:
        pending = orders_repo.count_items_with_status(self.db, order.id, "pending")
        if pending:
            raise BusinessRuleError(f"{prefix}: {pending} item(s) are still pending")

    def _shopping_item(self, order: models.Order, actor: Actor, params: Dict[str, Any]) -> models.OrderItem:
        self._require_assigned(order, actor, ("assigned_shopper_id",), "Only the assigned shopper can update items")
        if order.status != OrderStatus.SHOPPING.value:
            raise BusinessRuleError("Items can only be updated while the order is being shopped")
        return self._order_item(order, params)

    def _order_item(self, order: models.Order, params: Dict[str, Any]) -> models.OrderItem:
        item_id = params.get("item_id")
        if not item_id:
            raise InvalidParametersError("item_id is required")
        try:
            item_id = item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id))
        except ValueError:
            raise InvalidParametersError("item_id must be a UUID")
        item = orders_repo.get_order_item(self.db, order.id, item_id)
        if item is None:
            raise ItemNotFoundError()
        return item

    def _log_item_action(self, order: models.Order, actor: Actor, action: WorkflowAction, item: models.OrderItem, notes: str) -> None:
        workflow_log.log(
            self.db,
            order_id=order.id,
            action=action,
            phase=WorkflowPhase.SHOPPING,
            previous_status=order.status,
            new_status=order.status,
            actor_id=actor.id,
            actor_role=actor.primary_role,
            notes=notes,
            metadata={"item_id": str(item.id), "shopping_status": item.shopping_status},
            commit=False,
        )

    def record_event(self, order: models.Order, event_type: str, actor: Actor, data: Dict[str, Any]) -> None:
        event = order_events.record_event(self.db, order.id, event_type, actor_role=actor.primary_role, data=data, publish=False)
        self._pending_events.append(event)

    def commit(self) -> None:
        """Commit the transaction, then publish the events it recorded."""
        self.db.commit()
        events, self._pending_events = self._pending_events, []
        bus = order_events.get_event_bus()
        for event in events:
            bus.publish(event)
