import uuid
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator, model_validator


class CheckoutItem(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class CheckoutRequest(BaseModel):
    customer_name: str = Field(min_length=1)
    customer_email: str
    customer_phone: Optional[str] = None
    property_address: Optional[str] = None
    arrival_date: Optional[date] = None
    departure_date: Optional[date] = None
    guest_count: Optional[int] = Field(default=None, ge=1)
    dietary_restrictions: List[str] = Field(default_factory=list)
    special_instructions: Optional[str] = None
    items: List[CheckoutItem] = Field(min_length=1)

    @field_validator("customer_email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = (value or "").strip().lower()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("customer_email must be a valid email address")
        return value

    @model_validator(mode="after")
    def _check_stay_dates(self):
        if self.arrival_date and self.departure_date and self.departure_date < self.arrival_date:
            raise ValueError("departure_date must not be before arrival_date")
        return self


class CheckoutResponse(BaseModel):
    url: str
    order_id: uuid.UUID
    access_token: str


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(min_length=1)
    order_id: uuid.UUID


class VerifyPaymentResponse(BaseModel):
    success: bool
    order_id: uuid.UUID
    payment_status: str
    order_status: str


class OrderItem(BaseModel):
    id: uuid.UUID
    product_id: Optional[uuid.UUID] = None
    product_name: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float
    found_quantity: Optional[int] = None
    shopping_status: str
    shopper_notes: Optional[str] = None
    photo_url: Optional[str] = None
    substitution_data: Optional[Dict[str, Any]] = None
    model_config = ConfigDict(from_attributes=True)


class OrderSummary(BaseModel):
    id: uuid.UUID
    order_number: str
    customer_name: str
    property_address: Optional[str] = None
    arrival_date: Optional[date] = None
    status: str
    payment_status: str
    total_amount: float
    assigned_shopper_id: Optional[uuid.UUID] = None
    assigned_driver_id: Optional[uuid.UUID] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class Order(OrderSummary):
    customer_email: str
    customer_phone: Optional[str] = None
    departure_date: Optional[date] = None
    guest_count: Optional[int] = None
    dietary_restrictions: Optional[List[str]] = None
    special_instructions: Optional[str] = None
    notes: Optional[str] = None
    subtotal: float
    tax_amount: float
    delivery_fee: float
    assigned_concierge_id: Optional[uuid.UUID] = None
    shopping_started_at: Optional[datetime] = None
    shopping_completed_at: Optional[datetime] = None
    delivery_started_at: Optional[datetime] = None
    estimated_delivery_at: Optional[datetime] = None
    delivery_completed_at: Optional[datetime] = None
    updated_at: datetime
    items: List[OrderItem] = Field(default_factory=list)


class OrderEvent(BaseModel):
    id: uuid.UUID
    event_type: str
    actor_role: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class OrderTracking(BaseModel):
    order: Order
    status_label: str
    status_description: str
    next_statuses: List[str]
    events: List[OrderEvent]


class NextStatusesResponse(BaseModel):
    status: str
    next_statuses: List[str]
    is_terminal: bool


class WorkflowLogEntry(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    phase: str
    action: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    timestamp: datetime
    model_config = ConfigDict(from_attributes=True)
