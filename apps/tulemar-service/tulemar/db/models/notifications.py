import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from .base import Base, now_utc


class OrderNotification(Base):
    __tablename__ = 'order_notifications'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    notification_type = Column(String(60), nullable=False)
    # client|shopper|driver|concierge|admin|store_manager
    recipient_type = Column(String(32), nullable=False)
    # Email address, or user id for in-app rows keyed to staff
    recipient_identifier = Column(String(320), nullable=False)
    # in_app|email|sms|push
    channel = Column(String(20), nullable=False)
    message_content = Column(Text, nullable=False)
    metadata_json = Column('metadata', JSONB, nullable=True)
    # pending|sent|failed
    status = Column(String(20), nullable=False, default='pending')
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)

    __table_args__ = (
        Index('idx_order_notifications_order_id_created_at', 'order_id', 'created_at'),
        Index('idx_order_notifications_recipient', 'recipient_identifier', 'read_at'),
        Index('idx_order_notifications_status', 'status'),
    )
