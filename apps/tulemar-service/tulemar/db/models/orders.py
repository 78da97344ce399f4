import uuid
from sqlalchemy import Column, String, Text, DateTime, Date, Integer, Numeric, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from .base import Base, now_utc


class Order(Base):
    __tablename__ = 'orders'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(320), nullable=False)
    customer_phone = Column(String(40), nullable=True)
    property_address = Column(Text, nullable=True)
    arrival_date = Column(Date, nullable=True)
    departure_date = Column(Date, nullable=True)
    guest_count = Column(Integer, nullable=True)
    dietary_restrictions = Column(JSONB, nullable=True)
    special_instructions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    # placed|claimed|shopping|ready|delivered|closed|canceled
    status = Column(String(20), nullable=False, default='placed')
    # pending|completed|failed
    payment_status = Column(String(20), nullable=False, default='pending')
    payment_intent_id = Column(String(255), nullable=True)
    stripe_session_id = Column(String(255), nullable=True)
    access_token = Column(String(64), nullable=False, unique=True)

    assigned_shopper_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    assigned_driver_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    assigned_concierge_id = Column(UUID(as_uuid=True), ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    shopping_started_at = Column(DateTime(timezone=True), nullable=True)
    shopping_completed_at = Column(DateTime(timezone=True), nullable=True)
    delivery_started_at = Column(DateTime(timezone=True), nullable=True)
    estimated_delivery_at = Column(DateTime(timezone=True), nullable=True)
    delivery_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    assignments = relationship("StakeholderAssignment", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_orders_status_created_at', 'status', 'created_at'),
        Index('idx_orders_customer_email', 'customer_email'),
        Index('idx_orders_assigned_shopper_id', 'assigned_shopper_id'),
        Index('idx_orders_stripe_session_id', 'stripe_session_id'),
    )

    @property
    def order_number(self) -> str:
        return str(self.id)[:8]


class OrderItem(Base):
    __tablename__ = 'order_items'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey('products.id', ondelete='SET NULL'), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    found_quantity = Column(Integer, nullable=True)
    # pending|found|substitution_needed|substituted|unavailable
    shopping_status = Column(String(32), nullable=False, default='pending')
    shopper_notes = Column(Text, nullable=True)
    photo_url = Column(String(500), nullable=True)
    substitution_data = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="joined")

    __table_args__ = (
        Index('idx_order_items_order_id', 'order_id'),
    )

    @property
    def product_name(self):
        return self.product.name if self.product is not None else None
