import uuid
from typing import Optional, List
from pydantic import BaseModel, ConfigDict


class Category(BaseModel):
    id: uuid.UUID
    name: str
    icon: Optional[str] = None
    description: Optional[str] = None
    sort_order: int = 0
    model_config = ConfigDict(from_attributes=True)


class Product(BaseModel):
    id: uuid.UUID
    category_id: Optional[uuid.UUID] = None
    name: str
    description: Optional[str] = None
    price: float
    unit: Optional[str] = None
    origin: Optional[str] = None
    image_url: Optional[str] = None
    stock_quantity: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    products: List[Product]
    total_count: int
