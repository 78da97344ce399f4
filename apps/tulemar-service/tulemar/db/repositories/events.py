"""
Order event repository functions.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from tulemar.db import models


def create_event(
    db: Session,
    *,
    order_id: uuid.UUID,
    event_type: str,
    actor_role: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> models.OrderEvent:
    """Insert an event row. Does not commit."""
    event = models.OrderEvent(order_id=order_id, event_type=event_type, actor_role=actor_role, data=data or {})
    db.add(event)
    db.flush()
    return event


def get_events(db: Session, order_id: uuid.UUID, skip: int = 0, limit: Optional[int] = None) -> List[models.OrderEvent]:
    """Events oldest first; all of them unless ``limit`` is given."""
    query = (
        db.query(models.OrderEvent)
        .filter(models.OrderEvent.order_id == order_id)
        .order_by(models.OrderEvent.created_at.asc())
        .offset(skip)
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()
