"""
Domain errors raised by the order workflow, assignment, notification and
payment services. Routers translate them with ``status_code`` and
``to_detail()``.
"""
from __future__ import annotations

from typing import Any, Dict


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class InvalidParametersError(WorkflowError):
    code = "INVALID_PARAMETERS"
    status_code = 400


class ForbiddenActionError(WorkflowError):
    code = "FORBIDDEN"
    status_code = 403


class OrderNotFoundError(WorkflowError):
    code = "ORDER_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class StaffNotFoundError(WorkflowError):
    code = "STAFF_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Staff member not found"):
        super().__init__(message)


class ItemNotFoundError(WorkflowError):
    code = "ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Order item not found"):
        super().__init__(message)


class StaleWriteError(WorkflowError):
    """The order changed between read and write; the caller may re-read and retry."""
    code = "STALE_WRITE"
    status_code = 409
    retryable = True


class IllegalTransitionError(WorkflowError):
    code = "ILLEGAL_TRANSITION"
    status_code = 422


class BusinessRuleError(WorkflowError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class UnknownNotificationTypeError(WorkflowError):
    code = "UNKNOWN_NOTIFICATION_TYPE"
    status_code = 400


class PaymentVerificationError(WorkflowError):
    code = "PAYMENT_VERIFICATION_FAILED"
    status_code = 400


class PaymentProviderError(WorkflowError):
    code = "PAYMENT_PROVIDER_ERROR"
    status_code = 502
