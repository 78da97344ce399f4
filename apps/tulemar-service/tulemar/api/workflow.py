"""
Workflow API endpoints: staff actions on an order and the guarded status
transition.
"""
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tulemar.api.deps import actor_from_context, get_current_user_context, workflow_http_error
from tulemar.db import schemas
from tulemar.db.database import get_db
from tulemar.services.order_workflow_service import OrderWorkflowService
from tulemar.services.workflow_errors import WorkflowError

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.post("/orders/{order_id}/actions", response_model=schemas.ActionResult)
def perform_action(
    order_id: uuid.UUID,
    payload: schemas.WorkflowActionRequest,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """
    Run a workflow action (``accept_order``, ``start_shopping``, ``mark_item_found``, ...).

    Permission checks depend on the action and on who is assigned to the order.
    """
    _user, current_user = user_context
    params = payload.model_dump(exclude={"action"}, exclude_none=True)
    try:
        return OrderWorkflowService(db).perform_action(order_id, payload.action, actor_from_context(current_user), **params)
    except WorkflowError as e:
        raise workflow_http_error(e)


@router.post("/orders/{order_id}/transition", response_model=schemas.Order)
def transition_order(
    order_id: uuid.UUID,
    payload: schemas.TransitionRequest,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """
    Compare-and-set status change; 409 when the order moved on since it was read.

    Admins may make any legal change. Other staff are limited to the orders
    they are assigned to.
    """
    _user, current_user = user_context
    try:
        return OrderWorkflowService(db).advance_order_status(
            order_id,
            payload.to_status.value,
            payload.expected_status.value,
            actor_from_context(current_user),
            notes=payload.notes,
        )
    except WorkflowError as e:
        raise workflow_http_error(e)
