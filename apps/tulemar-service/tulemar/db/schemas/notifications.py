import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field, AliasChoices


class OrderNotification(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    notification_type: str
    recipient_type: str
    recipient_identifier: str
    channel: str
    message_content: str
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    status: str
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class OrchestrateRequest(BaseModel):
    order_id: uuid.UUID
    notification_type: str = Field(min_length=1)
    phase: str = "general"
    recipient_type: Optional[str] = None
    recipient_identifier: Optional[str] = None
    channel: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class OrchestrationResult(BaseModel):
    success: bool = True
    notifications_sent: int
    notifications: List[uuid.UUID]
    failures: int = 0


class NotificationListResponse(BaseModel):
    notifications: List[OrderNotification]
    unread_count: int
    total_count: int


class NotificationStatsResponse(BaseModel):
    unread_count: int
    total_count: int
