"""
User and role repository functions.
"""
from __future__ import annotations

import uuid
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.utils.roles import validate_role


def get_user(db: Session, user_id: uuid.UUID) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def get_role_names(db: Session, user_id: uuid.UUID) -> List[str]:
    rows = db.query(models.UserRole.role).filter(models.UserRole.user_id == user_id).all()
    return sorted({r[0] for r in rows})


def add_roles(db: Session, user: models.User, roles: Iterable[str], commit: bool = True) -> List[str]:
    """Grant roles that the user does not hold yet; returns the added names."""
    existing = set(get_role_names(db, user.id))
    added = []
    for role in roles:
        validate_role(role)
        if role in existing:
            continue
        db.add(models.UserRole(user_id=user.id, role=role))
        existing.add(role)
        added.append(role)
    if added:
        if commit:
            db.commit()
            db.refresh(user)
        else:
            db.flush()
    return added


def get_users_with_role(db: Session, role: str) -> List[models.User]:
    """Users holding ``role``, longest-standing first."""
    return (
        db.query(models.User)
        .join(models.UserRole, models.UserRole.user_id == models.User.id)
        .filter(models.UserRole.role == role)
        .order_by(models.User.created_at.asc(), models.User.email.asc())
        .all()
    )
