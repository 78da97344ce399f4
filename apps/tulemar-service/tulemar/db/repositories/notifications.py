"""
Order notification repository functions.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc


def create_notification(
    db: Session,
    *,
    order_id: uuid.UUID,
    notification_type: str,
    recipient_type: str,
    recipient_identifier: str,
    channel: str,
    message_content: str,
    metadata: Optional[Dict[str, Any]] = None,
    status: str = "pending",
) -> models.OrderNotification:
    """Insert a notification row. Does not commit."""
    row = models.OrderNotification(
        order_id=order_id,
        notification_type=notification_type,
        recipient_type=recipient_type,
        recipient_identifier=recipient_identifier,
        channel=channel,
        message_content=message_content,
        metadata_json=metadata or {},
        status=status,
        sent_at=now_utc() if status == "sent" else None,
    )
    db.add(row)
    db.flush()
    return row


def mark_sent(db: Session, notification_id: uuid.UUID) -> Optional[models.OrderNotification]:
    row = get_notification(db, notification_id)
    if row is not None:
        row.status = "sent"
        row.sent_at = now_utc()
        row.error_message = None
        db.flush()
    return row


def mark_failed(db: Session, notification_id: uuid.UUID, error_message: str) -> Optional[models.OrderNotification]:
    row = get_notification(db, notification_id)
    if row is not None:
        row.status = "failed"
        row.error_message = error_message
        db.flush()
    return row


def get_notification(db: Session, notification_id: uuid.UUID) -> Optional[models.OrderNotification]:
    return db.query(models.OrderNotification).filter(models.OrderNotification.id == notification_id).first()

def get_for_recipient(
    db: Session,
    recipient_identifiers: List[str],
    unread_only: bool = False,
    limit: int = 50,
) -> List[models.OrderNotification]:
    query = db.query(models.OrderNotification).filter(
        models.OrderNotification.recipient_identifier.in_(recipient_identifiers)
    )
    if unread_only:
        query = query.filter(models.OrderNotification.read_at.is_(None))
    return query.order_by(models.OrderNotification.created_at.desc()).limit(limit).all()


def count_for_recipient(db: Session, recipient_identifiers: List[str], unread_only: bool = False) -> int:
    query = db.query(models.OrderNotification).filter(
        models.OrderNotification.recipient_identifier.in_(recipient_identifiers)
    )
    if unread_only:
        query = query.filter(models.OrderNotification.read_at.is_(None))
    return query.count()
