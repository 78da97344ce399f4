"""
Domain-split SQLAlchemy models with a package-level aggregator.

Exposes `Base`, `now_utc`, and all ORM classes.
"""

from .base import Base, now_utc  # re-export

# Domain models
from .users import User, UserRole
from .catalog import Category, Product
from .orders import Order, OrderItem
from .workflow import StakeholderAssignment, OrderWorkflowLog, OrderEvent
from .notifications import OrderNotification

__all__ = [
    # base
    "Base",
    "now_utc",
    # users
    "User",
    "UserRole",
    # catalog
    "Category",
    "Product",
    # orders
    "Order",
    "OrderItem",
    # workflow
    "StakeholderAssignment",
    "OrderWorkflowLog",
    "OrderEvent",
    # notifications
    "OrderNotification",
]
