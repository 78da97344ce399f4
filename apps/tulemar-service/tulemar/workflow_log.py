"""
Workflow log helpers and enums.

Centralized helpers to append normalized rows to ``order_workflow_log``;
includes convenience wrappers for transitions, assignments, payments and
notification fan-out.
"""
from __future__ import annotations
import uuid
from enum import Enum
from typing import Any, Optional, Dict
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.repositories import workflow_log as workflow_log_repo
from tulemar.utils.order_status import get_workflow_phase


class WorkflowAction(str, Enum):
    # Status transitions
    STATUS_CHANGED = "status_changed"
    ACCEPT_ORDER = "accept_order"
    START_SHOPPING = "start_shopping"
    COMPLETE_SHOPPING = "complete_shopping"
    START_DELIVERY = "start_delivery"
    COMPLETE_DELIVERY = "complete_delivery"
    CLOSE_ORDER = "close_order"
    CANCEL_ORDER = "cancel_order"
    # Item handling
    MARK_ITEM_FOUND = "mark_item_found"
    MARK_ITEM_UNAVAILABLE = "mark_item_unavailable"
    REQUEST_SUBSTITUTION = "request_substitution"
    APPROVE_SUBSTITUTION = "approve_substitution"
    DECLINE_SUBSTITUTION = "decline_substitution"
    # Assignment
    STAFF_ASSIGNED = "staff_assigned"
    STAFF_UNASSIGNED = "staff_unassigned"
    # Payment
    ORDER_CREATED = "order_created"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    # Automation
    AUTOMATED_COMPLETION_LOGGED = "automated_completion_logged"


class WorkflowPhase(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_ASSIGNMENT = "order_assignment"
    ASSIGNMENT = "assignment"
    SHOPPING = "shopping"
    DELIVERY = "delivery"
    COMPLETION = "completion"
    CANCELLATION = "cancellation"
    PAYMENT = "payment"
    NOTIFICATION = "notification"
    AUTOMATION = "automation"
    AUDIT = "audit"
    GENERAL = "general"


def _value(v):
    return v.value if isinstance(v, Enum) else v


def log(
    db: Session,
    *,
    order_id: uuid.UUID,
    action: WorkflowAction | str,
    phase: WorkflowPhase | str = WorkflowPhase.GENERAL,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> models.OrderWorkflowLog:
    """Central workflow logging helper.

    Persists plain string values, never Enum reprs. With ``commit=False`` the
    row joins the caller's transaction.
    """
    return workflow_log_repo.create_entry(
        db,
        order_id=order_id,
        phase=str(_value(phase)),
        action=str(_value(action)),
        previous_status=_value(previous_status),
        new_status=_value(new_status),
        actor_id=actor_id,
        actor_role=actor_role,
        notes=notes,
        metadata=metadata,
        commit=commit,
    )


__all__ = ["WorkflowAction", "WorkflowPhase", "log"]


def log_transition(
    db: Session,
    *,
    order_id: uuid.UUID,
    previous_status: str,
    new_status: str,
    action: WorkflowAction | str = WorkflowAction.STATUS_CHANGED,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    payload = {"source": "guarded_workflow", "transition_type": "STATUS_CHANGED"}
    payload.update(metadata or {})
    return log(
        db,
        order_id=order_id,
        action=action,
        phase=get_workflow_phase(new_status),
        previous_status=previous_status,
        new_status=new_status,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=notes,
        metadata=payload,
        commit=commit,
    )


def log_assignment(
    db: Session,
    *,
    order_id: uuid.UUID,
    staff: models.User,
    role: str,
    actor_id: Optional[uuid.UUID],
    status: Optional[str] = None,
    action: WorkflowAction = WorkflowAction.STAFF_ASSIGNED,
    commit: bool = True,
):
    name = staff.display_name or staff.email
    verb = "Assigned" if action == WorkflowAction.STAFF_ASSIGNED else "Unassigned"
    joiner = "as" if action == WorkflowAction.STAFF_ASSIGNED else "from"
    return log(
        db,
        order_id=order_id,
        action=action,
        phase=WorkflowPhase.ASSIGNMENT,
        previous_status=status,
        new_status=status,
        actor_id=actor_id,
        actor_role="admin",
        notes=f"{verb} {name} {joiner} {role}",
        metadata={
            "assigned_user_id": str(staff.id),
            "role": role,
            "staff_name": name,
            "staff_email": staff.email,
        },
        commit=commit,
    )


def log_payment(
    db: Session,
    *,
    order_id: uuid.UUID,
    paid: bool,
    previous_status: Optional[str],
    new_status: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    return log(
        db,
        order_id=order_id,
        action=WorkflowAction.PAYMENT_COMPLETED if paid else WorkflowAction.PAYMENT_FAILED,
        phase=WorkflowPhase.PAYMENT,
        previous_status=previous_status,
        new_status=new_status,
        actor_role="system",
        notes="Payment confirmed" if paid else "Payment not completed",
        metadata=metadata,
        commit=commit,
    )


def log_notifications_sent(
    db: Session,
    *,
    order_id: uuid.UUID,
    notification_type: str,
    phase: str,
    count: int,
    status: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    return log(
        db,
        order_id=order_id,
        action=f"notifications_sent_{notification_type}",
        phase=phase or WorkflowPhase.NOTIFICATION,
        previous_status=status,
        new_status=status,
        actor_role="system",
        notes=f"Sent {count} notifications",
        metadata=metadata,
        commit=commit,
    )


def log_action_failure(
    db: Session,
    *,
    order_id: uuid.UUID,
    action: str,
    error_code: str,
    message: str,
    request_id: str,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
):
    """Record a rejected workflow action in its own transaction."""
    return log(
        db,
        order_id=order_id,
        action=f"{action}_failure",
        phase=WorkflowPhase.AUDIT,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=message,
        metadata={"error_code": error_code, "request_id": request_id},
        commit=True,
    )


__all__.extend(["log_transition", "log_assignment", "log_payment", "log_notifications_sent", "log_action_failure"])
