import pytest

from tulemar.utils.order_status import (
    ALL_STATUSES,
    LEGAL_TRANSITIONS,
    OrderStatus,
    get_next_statuses,
    get_status_description,
    get_status_label,
    get_workflow_phase,
    is_legal_transition,
    is_status_after,
    is_status_before,
    is_terminal,
)


@pytest.mark.parametrize(
    "from_status,to_status",
    [
        ("placed", "claimed"),
        ("claimed", "shopping"),
        ("shopping", "ready"),
        ("ready", "delivered"),
        ("delivered", "closed"),
        ("placed", "canceled"),
        ("ready", "canceled"),
    ],
)
def test_legal_transitions(from_status, to_status):
    assert is_legal_transition(from_status, to_status) is True


@pytest.mark.parametrize(
    "from_status,to_status",
    [
        ("placed", "shopping"),
        ("shopping", "claimed"),
        ("delivered", "canceled"),
        ("closed", "placed"),
        ("canceled", "placed"),
        ("placed", "placed"),
        ("bogus", "claimed"),
        ("placed", "bogus"),
    ],
)
def test_illegal_transitions(from_status, to_status):
    assert is_legal_transition(from_status, to_status) is False


def test_table_covers_every_status_and_terminals_are_dead_ends():
    assert set(LEGAL_TRANSITIONS) == ALL_STATUSES
    for status in ("closed", "canceled"):
        assert is_terminal(status)
        assert get_next_statuses(status) == []


def test_enum_values_are_accepted():
    assert is_legal_transition(OrderStatus.PLACED, OrderStatus.CLAIMED)
    assert is_terminal(OrderStatus.CANCELED)


def test_next_statuses_put_cancel_last():
    assert get_next_statuses("placed") == ["claimed", "canceled"]
    assert get_next_statuses("delivered") == ["closed"]


def test_before_and_after_ignore_canceled():
    assert is_status_before("placed", "ready")
    assert is_status_after("closed", "delivered")
    assert not is_status_before("canceled", "ready")
    assert not is_status_after("canceled", "placed")


def test_labels_and_phases():
    assert get_status_label("claimed") == "Assigned to Shopper"
    assert get_status_label("mystery") == "mystery"
    assert get_status_description("mystery") == "Unknown status"
    assert get_workflow_phase("ready") == "shopping"
    assert get_workflow_phase("canceled") == "cancellation"
    assert get_workflow_phase(None) == "general"
