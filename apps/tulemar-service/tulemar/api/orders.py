"""
Order API endpoints: checkout, payment verification, customer tracking and
staff views of orders, their events and workflow log.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from tulemar.api.deps import (
    get_current_user_context,
    get_current_user_context_or_guest,
    require_roles,
    workflow_http_error,
)
from tulemar.db import models, schemas
from tulemar.db.database import get_db
from tulemar.db.repositories import orders as orders_repo
from tulemar.db.repositories import workflow_log as workflow_log_repo
from tulemar.services import order_events
from tulemar.services.checkout_service import CheckoutService
from tulemar.services.workflow_errors import WorkflowError
from tulemar.utils.order_status import (
    get_next_statuses,
    get_status_description,
    get_status_label,
    is_terminal,
)
from tulemar.utils.roles import OPERATIONAL_ROLES, roles_allow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _is_staff(current_user: Optional[Dict[str, Any]]) -> bool:
    return bool(current_user) and roles_allow(current_user.get("roles") or [], "can_view_orders")


def _load_order_for(db: Session, order_id: uuid.UUID, current_user: Dict[str, Any]) -> models.Order:
    """Staff see every order; customers only their own."""
    order = orders_repo.get_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if _is_staff(current_user):
        return order
    if order.customer_email == current_user.get("email") or order.client_id == current_user.get("id"):
        return order
    # Hide existence from other customers
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")


# === Checkout and payment ===

@router.post("/checkout", response_model=schemas.CheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_checkout(
    payload: schemas.CheckoutRequest,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context_or_guest),
):
    user, _current_user = user_context
    try:
        result = CheckoutService(db).create_checkout(payload, client_id=user.id if user else None)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return result


@router.post("/verify-payment", response_model=schemas.VerifyPaymentResponse)
def verify_payment(payload: schemas.VerifyPaymentRequest, db: Session = Depends(get_db)):
    try:
        return CheckoutService(db).verify_payment(payload.session_id, payload.order_id)
    except WorkflowError as e:
        raise workflow_http_error(e)


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    try:
        # Verification sends email synchronously; keep it off the event loop
        result = await run_in_threadpool(CheckoutService(db).handle_webhook, payload, stripe_signature)
    except WorkflowError as e:
        raise workflow_http_error(e)
    return {"received": result["received"], "handled": result["handled"], "type": result["type"]}


# === Customer tracking ===

@router.get("/track/{access_token}", response_model=schemas.OrderTracking)
def track_order(access_token: str, db: Session = Depends(get_db)):
    """Public tracking page data, addressed by the order's access token."""
    order = orders_repo.get_order_by_access_token(db, access_token)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return {
        "order": order,
        "status_label": get_status_label(order.status),
        "status_description": get_status_description(order.status),
        "next_statuses": get_next_statuses(order.status),
        "events": order_events.list_events(db, order.id, customer_view=True),
    }


# === Staff and customer views ===

@router.get("/", response_model=List[schemas.OrderSummary])
def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    payment_status: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user_context=Depends(require_roles(*OPERATIONAL_ROLES)),
):
    return orders_repo.get_orders(db, status=status_filter, payment_status=payment_status, skip=skip, limit=limit)


@router.get("/mine", response_model=List[schemas.Order])
def list_my_orders(
    include_completed: bool = False,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """Orders assigned to the current staff member, soonest arrival first."""
    user, _current_user = user_context
    return orders_repo.get_orders_assigned_to(db, user.id, include_completed=include_completed)


@router.get("/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    _user, current_user = user_context
    return _load_order_for(db, order_id, current_user)


@router.get("/{order_id}/workflow-log", response_model=List[schemas.WorkflowLogEntry])
def get_workflow_log(
    order_id: uuid.UUID,
    phase: Optional[str] = None,
    action: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_context=Depends(require_roles(*OPERATIONAL_ROLES)),
):
    if orders_repo.get_order(db, order_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return workflow_log_repo.get_entries(db, order_id, phase=phase, action=action, skip=skip, limit=limit)


@router.get("/{order_id}/events", response_model=List[schemas.OrderEvent])
def get_order_events(
    order_id: uuid.UUID,
    skip: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """Order events oldest first; without ``limit`` the whole history is returned."""
    _user, current_user = user_context
    _load_order_for(db, order_id, current_user)
    return order_events.list_events(db, order_id, customer_view=not _is_staff(current_user), skip=skip, limit=limit)


@router.get("/{order_id}/next-statuses", response_model=schemas.NextStatusesResponse)
def get_order_next_statuses(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    _user, current_user = user_context
    order = _load_order_for(db, order_id, current_user)
    return {
        "status": order.status,
        "next_statuses": get_next_statuses(order.status),
        "is_terminal": is_terminal(order.status),
    }
