"""
Workflow log repository functions.

Rows are append-only: there is no update or delete here.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from tulemar.db import models


def create_entry(
    db: Session,
    *,
    order_id: uuid.UUID,
    phase: str,
    action: str,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> models.OrderWorkflowLog:
    entry = models.OrderWorkflowLog(
        order_id=order_id,
        phase=phase,
        action=action,
        previous_status=previous_status,
        new_status=new_status,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=notes,
        metadata_json=metadata or {},
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry


def get_entries(
    db: Session,
    order_id: uuid.UUID,
    phase: Optional[str] = None,
    action: Optional[str] = None,
    skip: int = 0,
    limit: int = 200,
) -> List[models.OrderWorkflowLog]:
    query = db.query(models.OrderWorkflowLog).filter(models.OrderWorkflowLog.order_id == order_id)
    if phase:
        query = query.filter(models.OrderWorkflowLog.phase == phase)
    if action:
        query = query.filter(models.OrderWorkflowLog.action == action)
    return query.order_by(models.OrderWorkflowLog.timestamp.asc()).offset(skip).limit(limit).all()
