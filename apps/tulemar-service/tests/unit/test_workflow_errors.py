import pytest

from tulemar.services import workflow_errors
from tulemar.services.workflow_errors import PaymentProviderError, StaleWriteError, WorkflowError


def _all_errors():
    pending = [WorkflowError]
    found = []
    while pending:
        cls = pending.pop()
        found.append(cls)
        pending.extend(cls.__subclasses__())
    return found


def test_only_stale_write_is_retryable():
    retryable = [cls.__name__ for cls in _all_errors() if cls.retryable]
    assert retryable == ["StaleWriteError"]


@pytest.mark.parametrize(
    "error,status_code,code",
    [
        (StaleWriteError("moved on"), 409, "STALE_WRITE"),
        (PaymentProviderError("Stripe unavailable"), 502, "PAYMENT_PROVIDER_ERROR"),
        (workflow_errors.OrderNotFoundError(), 404, "ORDER_NOT_FOUND"),
        (workflow_errors.BusinessRuleError("nope"), 422, "BUSINESS_RULE_VIOLATION"),
    ],
)
def test_error_detail(error, status_code, code):
    assert error.status_code == status_code
    assert error.to_detail() == {"code": code, "message": error.message, "retryable": error.retryable}


def test_provider_error_detail_is_not_retryable():
    assert PaymentProviderError("Stripe unavailable").to_detail()["retryable"] is False
