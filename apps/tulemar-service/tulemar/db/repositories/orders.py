"""
Order repository functions.

Includes the compare-and-set status update used by the guarded workflow:
the UPDATE only applies while the row still carries the status the caller
read, so concurrent writers cannot both advance the same order.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc


def get_order(db: Session, order_id: uuid.UUID) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.id == order_id).first()


def get_order_by_access_token(db: Session, access_token: str) -> Optional[models.Order]:
    if not access_token:
        return None
    return db.query(models.Order).filter(models.Order.access_token == access_token).first()


def get_order_by_session_id(db: Session, session_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.stripe_session_id == session_id).first()


def get_orders(
    db: Session,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Order]:
    query = db.query(models.Order)
    if status:
        query = query.filter(models.Order.status == status)
    if payment_status:
        query = query.filter(models.Order.payment_status == payment_status)
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


def get_orders_assigned_to(
    db: Session,
    user_id: uuid.UUID,
    include_completed: bool = False,
) -> List[models.Order]:
    query = (
        db.query(models.Order)
        .join(models.StakeholderAssignment, models.StakeholderAssignment.order_id == models.Order.id)
        .filter(models.StakeholderAssignment.user_id == user_id)
    )
    if not include_completed:
        query = query.filter(models.StakeholderAssignment.status != "completed")
    return query.order_by(models.Order.arrival_date.asc(), models.Order.created_at.asc()).all()


def create_order(db: Session, order_data: Dict[str, Any], items: List[Dict[str, Any]], commit: bool = True) -> models.Order:
    db_order = models.Order(**order_data)
    for item in items:
        db_order.items.append(models.OrderItem(**item))
    db.add(db_order)
    if commit:
        db.commit()
        db.refresh(db_order)
    else:
        db.flush()
    return db_order


def compare_and_set_status(
    db: Session,
    order_id: uuid.UUID,
    expected_status: str,
    new_status: str,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """Set ``status`` only if it still equals ``expected_status``.

    Returns False when another writer got there first. Does not commit.
    """
    stmt = (
        update(models.Order)
        .where(models.Order.id == order_id, models.Order.status == expected_status)
        .values(status=new_status, updated_at=now_utc(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def update_order_fields(db: Session, order: models.Order, values: Dict[str, Any], commit: bool = True) -> models.Order:
    for key, value in values.items():
        setattr(order, key, value)
    if commit:
        db.commit()
        db.refresh(order)
    else:
        db.flush()
    return order


def get_order_item(db: Session, order_id: uuid.UUID, item_id: uuid.UUID) -> Optional[models.OrderItem]:
    return (
        db.query(models.OrderItem)
        .filter(models.OrderItem.id == item_id, models.OrderItem.order_id == order_id)
        .first()
    )


def count_items_with_status(db: Session, order_id: uuid.UUID, shopping_status: str) -> int:
    return (
        db.query(models.OrderItem)
        .filter(models.OrderItem.order_id == order_id, models.OrderItem.shopping_status == shopping_status)
        .count()
    )


def compare_and_set_payment_status(
    db: Session,
    order_id: uuid.UUID,
    expected_status: str,
    new_status: str,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """Settle ``payment_status`` once; a concurrent verifier gets False. Does not commit."""
    stmt = (
        update(models.Order)
        .where(models.Order.id == order_id, models.Order.payment_status == expected_status)
        .values(payment_status=new_status, updated_at=now_utc(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1
