"""Business logic services for the order lifecycle, notifications and payments."""

from .workflow_errors import (
    WorkflowError,
    InvalidParametersError,
    ForbiddenActionError,
    OrderNotFoundError,
    StaffNotFoundError,
    ItemNotFoundError,
    StaleWriteError,
    IllegalTransitionError,
    BusinessRuleError,
    UnknownNotificationTypeError,
    PaymentVerificationError,
    PaymentProviderError,
)

__all__ = [
    "WorkflowError",
    "InvalidParametersError",
    "ForbiddenActionError",
    "OrderNotFoundError",
    "StaffNotFoundError",
    "ItemNotFoundError",
    "StaleWriteError",
    "IllegalTransitionError",
    "BusinessRuleError",
    "UnknownNotificationTypeError",
    "PaymentVerificationError",
    "PaymentProviderError",
]
