"""
Catalog repository functions: categories and products.
"""
from __future__ import annotations

import uuid
from typing import Iterable, List, Optional, Tuple
from sqlalchemy.orm import Session

from tulemar.db import models


def get_active_categories(db: Session) -> List[models.Category]:
    return (
        db.query(models.Category)
        .filter(models.Category.is_active.is_(True))
        .order_by(models.Category.sort_order.asc(), models.Category.name.asc())
        .all()
    )


def get_product(db: Session, product_id: uuid.UUID) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_products_by_ids(db: Session, product_ids: Iterable[uuid.UUID]) -> List[models.Product]:
    ids = list(product_ids)
    if not ids:
        return []
    return db.query(models.Product).filter(models.Product.id.in_(ids)).all()


def search_products(
    db: Session,
    category_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[models.Product], int]:
    query = db.query(models.Product).filter(models.Product.is_active.is_(True))
    if category_id:
        query = query.filter(models.Product.category_id == category_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            models.Product.name.ilike(pattern) | models.Product.description.ilike(pattern)
        )
    total = query.count()
    products = (
        query.order_by(models.Product.price.asc(), models.Product.name.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return products, total
