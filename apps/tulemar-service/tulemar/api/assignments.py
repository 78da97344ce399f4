"""
Stakeholder assignment endpoints.
"""
import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tulemar.api.deps import actor_from_context, require_admin, require_roles, workflow_http_error
from tulemar.db import schemas
from tulemar.db.database import get_db
from tulemar.services import assignment_service
from tulemar.services.workflow_errors import WorkflowError
from tulemar.utils.roles import OPERATIONAL_ROLES, StaffRoleEnum

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("/", response_model=schemas.AssignmentResult, status_code=status.HTTP_201_CREATED)
def assign_staff(
    payload: schemas.AssignmentCreate,
    db: Session = Depends(get_db),
    user_context=Depends(require_admin),
):
    _user, current_user = user_context
    try:
        return assignment_service.assign_staff(
            db,
            payload.order_id,
            payload.staff_id,
            payload.role.value,
            actor_from_context(current_user),
            notes=payload.notes,
        )
    except WorkflowError as e:
        raise workflow_http_error(e)


@router.get("/order/{order_id}", response_model=List[schemas.StakeholderAssignment])
def list_order_assignments(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user_context=Depends(require_roles(*OPERATIONAL_ROLES)),
):
    try:
        return assignment_service.list_assignments(db, order_id)
    except WorkflowError as e:
        raise workflow_http_error(e)


@router.delete("/order/{order_id}/{role}", status_code=status.HTTP_204_NO_CONTENT)
def unassign_staff(
    order_id: uuid.UUID,
    role: StaffRoleEnum,
    db: Session = Depends(get_db),
    user_context=Depends(require_admin),
):
    _user, current_user = user_context
    try:
        assignment_service.unassign(db, order_id, role.value, actor_from_context(current_user))
    except WorkflowError as e:
        raise workflow_http_error(e)
