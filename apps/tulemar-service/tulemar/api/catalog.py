"""
Catalog API endpoints: categories and products. Readable by guests.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from tulemar.db import schemas
from tulemar.db.database import get_db
from tulemar.db.repositories import catalog as catalog_repo

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/categories", response_model=List[schemas.Category])
def list_categories(db: Session = Depends(get_db)):
    return catalog_repo.get_active_categories(db)


@router.get("/products", response_model=schemas.ProductListResponse)
def list_products(
    category_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    List active products, cheapest first.

    - **category_id**: restrict to one category
    - **q**: case-insensitive match on name or description
    """
    products, total = catalog_repo.search_products(db, category_id=category_id, q=q, skip=skip, limit=limit)
    return schemas.ProductListResponse(products=products, total_count=total)


@router.get("/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: uuid.UUID, db: Session = Depends(get_db)):
    product = catalog_repo.get_product(db, product_id)
    if product is None or not product.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product
