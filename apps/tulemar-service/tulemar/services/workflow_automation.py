"""
Workflow automation rules run when an order reaches a milestone:

- payment confirmed: staff roles nobody holds yet are auto-assigned
- delivery started: an estimated delivery time is stored on the order
- delivered: the completion is written to the workflow log

Rules run inside the caller's transaction. Every rule that fires leaves a
``rule_executed_<rule id>`` row with phase ``automation``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Tuple

from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.db.repositories import users as users_repo
from tulemar.utils.feature_flags import workflow_automation_enabled
from tulemar.utils.roles import ROLE_CONCIERGE, ROLE_DRIVER, ROLE_SHOPPER
from tulemar import workflow_log
from tulemar.workflow_log import WorkflowAction, WorkflowPhase

logger = logging.getLogger(__name__)

TRIGGER_PAYMENT_CONFIRMED = "payment_confirmed"
TRIGGER_DELIVERY_STARTED = "delivery_started"
TRIGGER_DELIVERED = "delivered"

AUTO_ASSIGN_ROLES = (ROLE_SHOPPER, ROLE_DRIVER, ROLE_CONCIERGE)
DELIVERY_ESTIMATE_MINUTES = 45


@dataclass(frozen=True)
class AutomationRule:
    id: str
    trigger: str
    actions: Tuple[str, ...]
    # Order attributes that must hold the given value
    conditions: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True


AUTOMATION_RULES: Tuple[AutomationRule, ...] = (
    AutomationRule("auto_assign_on_confirm", TRIGGER_PAYMENT_CONFIRMED, ("assign_stakeholders",), {"payment_status": "completed"}),
    AutomationRule("auto_delivery_estimate", TRIGGER_DELIVERY_STARTED, ("estimate_delivery_time",)),
    AutomationRule("auto_completion_handling", TRIGGER_DELIVERED, ("log_completion",)),
)


def assign_stakeholders(db: Session, order: models.Order) -> Dict[str, str]:
    """Assign each staff role without an assignment to the longest-standing holder of that role.

    Returns role -> user id for the assignments made. The order's status and
    ``assigned_*`` columns are left alone; a shopper still accepts the order.
    """
    held = {a.role for a in assignments_repo.get_assignments_for_order(db, order.id)}
    assigned: Dict[str, str] = {}
    for role in AUTO_ASSIGN_ROLES:
        if role in held:
            continue
        candidates = users_repo.get_users_with_role(db, role)
        if not candidates:
            logger.warning("auto_assign_no_candidates order_id=%s role=%s", order.id, role)
            continue
        user = candidates[0]
        assignments_repo.upsert_assignment(
            db,
            order_id=order.id,
            user_id=user.id,
            role=role,
            status="assigned",
            notes="Auto-assigned by workflow automation",
        )
        assigned[role] = str(user.id)
    return assigned


def estimate_delivery_time(db: Session, order: models.Order) -> str:
    estimate = now_utc() + timedelta(minutes=DELIVERY_ESTIMATE_MINUTES)
    orders_repo.update_order_fields(db, order, {"estimated_delivery_at": estimate}, commit=False)
    return estimate.isoformat()


def log_completion(db: Session, order: models.Order) -> str:
    completed_at = now_utc().isoformat()
    workflow_log.log(
        db,
        order_id=order.id,
        action=WorkflowAction.AUTOMATED_COMPLETION_LOGGED,
        phase=WorkflowPhase.COMPLETION,
        previous_status=order.status,
        new_status=order.status,
        actor_role="system",
        notes="Order completion automatically logged by workflow system",
        metadata={"automated": True, "completion_time": completed_at, "logged_by": "workflow_automation"},
        commit=False,
    )
    return completed_at


_ACTION_HANDLERS: Dict[str, Callable[[Session, models.Order], Any]] = {
    "assign_stakeholders": assign_stakeholders,
    "estimate_delivery_time": estimate_delivery_time,
    "log_completion": log_completion,
}


def _conditions_met(order: models.Order, conditions: Dict[str, Any]) -> bool:
    for attribute, expected in conditions.items():
        if getattr(order, attribute, None) != expected:
            logger.info("automation_condition_failed order_id=%s %s=%s", order.id, attribute, getattr(order, attribute, None))
            return False
    return True


def run_automation(db: Session, order: models.Order, trigger: str, rules: Tuple[AutomationRule, ...] = AUTOMATION_RULES) -> List[str]:
    """Run the enabled rules for ``trigger``. Does not commit.

    Returns:
        Ids of the rules that ran
    """
    if not workflow_automation_enabled():
        return []
    executed = []
    for rule in rules:
        if not rule.enabled or rule.trigger != trigger or not _conditions_met(order, rule.conditions):
            continue
        results = {action: _ACTION_HANDLERS[action](db, order) for action in rule.actions}
        workflow_log.log(
            db,
            order_id=order.id,
            action=f"rule_executed_{rule.id}",
            phase=WorkflowPhase.AUTOMATION,
            previous_status=order.status,
            new_status=order.status,
            actor_role="system",
            notes=f"Automated workflow rule executed: {rule.id}",
            metadata={"rule_id": rule.id, "trigger": trigger, "actions": list(rule.actions), "results": results},
            commit=False,
        )
        executed.append(rule.id)
        logger.info("automation_rule_executed order_id=%s rule=%s", order.id, rule.id)
    return executed
