"""
Notification API Endpoints

Staff trigger order notification fan-out; every signed-in user reads their
own in-app notifications.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tulemar.api.deps import get_current_user_context, recipient_identifiers, require_roles, workflow_http_error
from tulemar.db import schemas
from tulemar.db.database import get_db
from tulemar.services.notification_orchestrator import NotificationOrchestrator
from tulemar.services.workflow_errors import WorkflowError
from tulemar.utils.roles import OPERATIONAL_ROLES


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/orchestrate", response_model=schemas.OrchestrationResult)
def orchestrate_notifications(
    payload: schemas.OrchestrateRequest,
    db: Session = Depends(get_db),
    user_context=Depends(require_roles(*OPERATIONAL_ROLES)),
):
    """
    Fan a notification out for an order.

    - **recipient_type** / **recipient_identifier**: send to that recipient only
    - **channel**: force a channel instead of the per-role default
    """
    service = NotificationOrchestrator(db)
    try:
        result = service.orchestrate(
            payload.order_id,
            payload.notification_type,
            phase=payload.phase,
            recipient_type=payload.recipient_type,
            recipient_identifier=payload.recipient_identifier,
            channel=payload.channel,
            metadata=payload.metadata,
        )
    except WorkflowError as e:
        raise workflow_http_error(e)
    return schemas.OrchestrationResult(**result)


@router.get("/", response_model=schemas.NotificationListResponse)
def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """
    Get notifications for the current user.

    - **unread_only**: If true, only return unread notifications
    - **limit**: Maximum number of notifications to return (default 50)
    """
    _user, current_user = user_context
    identifiers = recipient_identifiers(current_user)

    service = NotificationOrchestrator(db)
    notifications = service.list_for_recipient(identifiers, unread_only=unread_only, limit=limit)

    return schemas.NotificationListResponse(
        notifications=notifications,
        unread_count=service.get_unread_count(identifiers),
        total_count=len(notifications),
    )


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_notification_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    """
    Mark a specific notification as read.
    """
    _user, current_user = user_context

    service = NotificationOrchestrator(db)
    if not service.mark_read(notification_id, recipient_identifiers(current_user)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )


@router.get("/stats", response_model=schemas.NotificationStatsResponse)
def get_notification_stats(
    db: Session = Depends(get_db),
    user_context=Depends(get_current_user_context),
):
    _user, current_user = user_context
    identifiers = recipient_identifiers(current_user)
    service = NotificationOrchestrator(db)
    return schemas.NotificationStatsResponse(
        unread_count=service.get_unread_count(identifiers),
        total_count=service.get_total_count(identifiers),
    )
