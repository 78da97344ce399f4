import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from tulemar.utils.order_status import OrderStatus
from tulemar.utils.roles import StaffRoleEnum
from .orders import Order


class WorkflowActionRequest(BaseModel):
    action: str = Field(min_length=1)
    item_id: Optional[uuid.UUID] = None
    found_quantity: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    photo_url: Optional[str] = None
    reason: Optional[str] = None
    suggested_product: Optional[str] = None


class TransitionRequest(BaseModel):
    to_status: OrderStatus
    expected_status: OrderStatus
    notes: Optional[str] = None


class ActionResult(BaseModel):
    success: bool = True
    action: str
    order_id: uuid.UUID
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    request_id: str
    execution_time_ms: float


class StakeholderAssignment(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    status: str
    notes: Optional[str] = None
    assigned_at: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AssignmentCreate(BaseModel):
    order_id: uuid.UUID
    staff_id: uuid.UUID
    role: StaffRoleEnum
    notes: Optional[str] = None


class AssignmentResult(BaseModel):
    success: bool = True
    message: str
    assignment: StakeholderAssignment
    order_details: Order
