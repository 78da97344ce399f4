"""
Stakeholder assignment: admins put shoppers, drivers and concierges on an
order. One assignment per (order, role); reassigning replaces the holder.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.db.repositories import users as users_repo
from tulemar.services.notification_orchestrator import (
    NotificationOrchestrator,
    NOTIFY_ASSIGNMENT_RECEIVED,
    NOTIFY_STAFF_ASSIGNED,
)
from tulemar.services.order_workflow_service import Actor, OrderWorkflowService
from tulemar.services import order_events
from tulemar.services.workflow_errors import (
    BusinessRuleError,
    ForbiddenActionError,
    InvalidParametersError,
    OrderNotFoundError,
    StaffNotFoundError,
    WorkflowError,
)
from tulemar.utils.order_status import OrderStatus, is_terminal
from tulemar.utils.roles import ROLE_CLIENT, ROLE_SHOPPER, roles_allow, validate_assignment_role
from tulemar import workflow_log
from tulemar.workflow_log import WorkflowAction

logger = logging.getLogger(__name__)


def _role_column(role: str) -> str:
    return f"assigned_{role}_id"


def _require_admin(admin: Actor) -> None:
    if not roles_allow(admin.roles, "can_assign_staff"):
        raise ForbiddenActionError("Only admins can manage staff assignments")


def assign_staff(
    db: Session,
    order_id: uuid.UUID,
    staff_id: uuid.UUID,
    role: str,
    admin: Actor,
    notes: Optional[str] = None,
    notifier: Optional[NotificationOrchestrator] = None,
) -> Dict[str, Any]:
    """
    Assign a staff member to an order.

    Assigning a shopper to a ``placed`` order also claims it.

    Returns:
        Dict with 'success', 'message', 'assignment' and 'order_details'
    """
    role = getattr(role, "value", role)
    try:
        validate_assignment_role(role)
    except ValueError as e:
        raise InvalidParametersError(str(e))
    _require_admin(admin)

    order = orders_repo.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError()
    if is_terminal(order.status):
        raise BusinessRuleError(f"Cannot assign staff to a {order.status} order")
    staff = users_repo.get_user(db, staff_id)
    if staff is None:
        raise StaffNotFoundError()

    notifier = notifier or NotificationOrchestrator(db)
    workflow = OrderWorkflowService(db, notifier=notifier)
    try:
        assignment = assignments_repo.upsert_assignment(
            db, order_id=order.id, user_id=staff.id, role=role, status="assigned", notes=notes, accepted=True,
        )
        column_values = {_role_column(role): staff.id}
        if role == ROLE_SHOPPER and order.status == OrderStatus.PLACED.value:
            workflow.apply_transition(
                order,
                OrderStatus.CLAIMED.value,
                OrderStatus.PLACED.value,
                admin,
                values=column_values,
                metadata={"assigned_user_id": str(staff.id), "role": role},
            )
        else:
            orders_repo.update_order_fields(db, order, column_values, commit=False)

        workflow_log.log_assignment(db, order_id=order.id, staff=staff, role=role, actor_id=admin.id, status=order.status, commit=False)

        name = staff.display_name or staff.email
        workflow.record_event(order, order_events.EVENT_ASSIGNED, admin, {"role": role, "staff_name": name, "user_id": str(staff.id)})

        notifier.notify_direct(
            order,
            NOTIFY_STAFF_ASSIGNED,
            ROLE_CLIENT,
            order.customer_email,
            f"{name} has been assigned as your {role} for order #{order.order_number}",
            metadata={"role": role, "staff_id": str(staff.id)},
        )
        notifier.notify_direct(
            order,
            NOTIFY_ASSIGNMENT_RECEIVED,
            role,
            str(staff.id),
            f"You've been assigned as {role} for {order.customer_name}'s order (${order.total_amount:.2f})",
            metadata={"role": role, "order_id": str(order.id)},
        )
        workflow.commit()
    except WorkflowError:
        db.rollback()
        raise

    db.refresh(order)
    db.refresh(assignment)
    logger.info("staff_assigned order_id=%s role=%s user_id=%s", order.id, role, staff.id)
    return {
        "success": True,
        "message": f"Assigned {name} as {role}",
        "assignment": assignment,
        "order_details": order,
    }


def unassign(db: Session, order_id: uuid.UUID, role: str, admin: Actor) -> None:
    """Remove the role's assignment from a non-terminal order."""
    role = getattr(role, "value", role)
    try:
        validate_assignment_role(role)
    except ValueError as e:
        raise InvalidParametersError(str(e))
    _require_admin(admin)

    order = orders_repo.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError()
    if is_terminal(order.status):
        raise BusinessRuleError(f"Cannot change assignments on a {order.status} order")
    assignment = assignments_repo.get_assignment(db, order.id, role)
    if assignment is None:
        raise InvalidParametersError(f"No {role} is assigned to this order")

    staff = assignment.user
    assignments_repo.delete_assignment(db, assignment)
    orders_repo.update_order_fields(db, order, {_role_column(role): None}, commit=False)
    workflow_log.log_assignment(
        db,
        order_id=order.id,
        staff=staff,
        role=role,
        actor_id=admin.id,
        status=order.status,
        action=WorkflowAction.STAFF_UNASSIGNED,
        commit=False,
    )
    db.commit()
    logger.info("staff_unassigned order_id=%s role=%s user_id=%s", order.id, role, staff.id)


def list_assignments(db: Session, order_id: uuid.UUID) -> List[models.StakeholderAssignment]:
    if orders_repo.get_order(db, order_id) is None:
        raise OrderNotFoundError()
    return assignments_repo.get_assignments_for_order(db, order_id)


def list_for_user(db: Session, user_id: uuid.UUID, status: Optional[str] = None) -> List[models.StakeholderAssignment]:
    """Staff work queue, newest first."""
    return assignments_repo.get_assignments_for_user(db, user_id, status=status)
