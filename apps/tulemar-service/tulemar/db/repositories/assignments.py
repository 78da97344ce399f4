"""
Stakeholder assignment repository functions.
"""
from __future__ import annotations

import uuid
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc


def get_assignment(db: Session, order_id: uuid.UUID, role: str) -> Optional[models.StakeholderAssignment]:
    return (
        db.query(models.StakeholderAssignment)
        .filter(
            models.StakeholderAssignment.order_id == order_id,
            models.StakeholderAssignment.role == role,
        )
        .first()
    )


def get_assignments_for_order(
    db: Session,
    order_id: uuid.UUID,
    statuses: Optional[Iterable[str]] = None,
) -> List[models.StakeholderAssignment]:
    query = db.query(models.StakeholderAssignment).filter(models.StakeholderAssignment.order_id == order_id)
    if statuses:
        query = query.filter(models.StakeholderAssignment.status.in_(list(statuses)))
    return query.order_by(models.StakeholderAssignment.assigned_at.asc()).all()


def get_assignments_for_user(
    db: Session,
    user_id: uuid.UUID,
    status: Optional[str] = None,
) -> List[models.StakeholderAssignment]:
    query = db.query(models.StakeholderAssignment).filter(models.StakeholderAssignment.user_id == user_id)
    if status:
        query = query.filter(models.StakeholderAssignment.status == status)
    return query.order_by(models.StakeholderAssignment.assigned_at.desc()).all()


def upsert_assignment(
    db: Session,
    *,
    order_id: uuid.UUID,
    user_id: uuid.UUID,
    role: str,
    status: str,
    notes: Optional[str] = None,
    accepted: bool = False,
) -> models.StakeholderAssignment:
    """Create or replace the single assignment held for ``(order_id, role)``. Does not commit."""
    now = now_utc()
    assignment = get_assignment(db, order_id, role)
    if assignment is None:
        assignment = models.StakeholderAssignment(order_id=order_id, role=role)
        db.add(assignment)
    assignment.user_id = user_id
    assignment.status = status
    assignment.assigned_at = now
    assignment.accepted_at = now if accepted else None
    assignment.completed_at = None
    if notes is not None:
        assignment.notes = notes
    db.flush()
    return assignment


def complete_assignment(db: Session, order_id: uuid.UUID, role: str) -> Optional[models.StakeholderAssignment]:
    """Mark the role's assignment completed, if one exists. Does not commit."""
    assignment = get_assignment(db, order_id, role)
    if assignment is None or assignment.status == "completed":
        return assignment
    assignment.status = "completed"
    assignment.completed_at = now_utc()
    db.flush()
    return assignment


def delete_assignment(db: Session, assignment: models.StakeholderAssignment) -> None:
    db.delete(assignment)
    db.flush()
