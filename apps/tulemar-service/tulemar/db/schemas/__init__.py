"""
Domain-split Pydantic schemas with a package-level aggregator.
"""

from .catalog import Category, Product, ProductListResponse
from .orders import (
    CheckoutItem,
    CheckoutRequest,
    CheckoutResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    OrderItem,
    OrderSummary,
    Order,
    OrderEvent,
    OrderTracking,
    NextStatusesResponse,
    WorkflowLogEntry,
)
from .workflow import (
    WorkflowActionRequest,
    TransitionRequest,
    ActionResult,
    StakeholderAssignment,
    AssignmentCreate,
    AssignmentResult,
)
from .notifications import (
    OrderNotification,
    OrchestrateRequest,
    OrchestrationResult,
    NotificationListResponse,
    NotificationStatsResponse,
)

__all__ = [
    # Catalog
    "Category",
    "Product",
    "ProductListResponse",
    # Orders
    "CheckoutItem",
    "CheckoutRequest",
    "CheckoutResponse",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
    "OrderItem",
    "OrderSummary",
    "Order",
    "OrderEvent",
    "OrderTracking",
    "NextStatusesResponse",
    "WorkflowLogEntry",
    # Workflow
    "WorkflowActionRequest",
    "TransitionRequest",
    "ActionResult",
    "StakeholderAssignment",
    "AssignmentCreate",
    "AssignmentResult",
    # Notifications
    "OrderNotification",
    "OrchestrateRequest",
    "OrchestrationResult",
    "NotificationListResponse",
    "NotificationStatsResponse",
]
