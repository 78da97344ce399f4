import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from .base import Base, now_utc


class StakeholderAssignment(Base):
    __tablename__ = 'stakeholder_assignments'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    # shopper|driver|concierge
    role = Column(String(32), nullable=False)
    # assigned|accepted|completed
    status = Column(String(20), nullable=False, default='assigned')
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc, nullable=False)

    order = relationship("Order", back_populates="assignments")
    user = relationship("User", lazy="joined")

    __table_args__ = (
        Index('idx_stakeholder_assignments_order_role_unique', 'order_id', 'role', unique=True),
        Index('idx_stakeholder_assignments_user_id_status', 'user_id', 'status'),
    )


class OrderWorkflowLog(Base):
    """Append-only record of actions taken against an order."""
    __tablename__ = 'order_workflow_log'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    phase = Column(String(40), nullable=False)
    action = Column(String(80), nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    actor_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    actor_role = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    # Use a non-reserved Python attribute name while keeping DB column name 'metadata'
    metadata_json = Column('metadata', JSONB, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=now_utc, nullable=False)

    __table_args__ = (
        Index('ix_order_workflow_log_order_id_timestamp', 'order_id', 'timestamp'),
        Index('ix_order_workflow_log_action', 'action'),
    )


class OrderEvent(Base):
    __tablename__ = 'order_events'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    event_type = Column(String(40), nullable=False)
    actor_role = Column(String(32), nullable=True)
    data = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)

    __table_args__ = (
        Index('ix_order_events_order_id_created_at', 'order_id', 'created_at'),
    )
