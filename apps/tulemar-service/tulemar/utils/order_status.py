"""Order status state machine.

Static transition table plus the display helpers used by the workflow,
tracking and dashboard endpoints. Forward progress is linear; any
non-terminal status may move to ``canceled``.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class OrderStatus(str, Enum):
    PLACED = "placed"
    CLAIMED = "claimed"
    SHOPPING = "shopping"
    READY = "ready"
    DELIVERED = "delivered"
    CLOSED = "closed"
    CANCELED = "canceled"


ALL_STATUSES: FrozenSet[str] = frozenset(s.value for s in OrderStatus)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({OrderStatus.CLOSED.value, OrderStatus.CANCELED.value})

LEGAL_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PLACED.value: frozenset({OrderStatus.CLAIMED.value, OrderStatus.CANCELED.value}),
    OrderStatus.CLAIMED.value: frozenset({OrderStatus.SHOPPING.value, OrderStatus.CANCELED.value}),
    OrderStatus.SHOPPING.value: frozenset({OrderStatus.READY.value, OrderStatus.CANCELED.value}),
    OrderStatus.READY.value: frozenset({OrderStatus.DELIVERED.value, OrderStatus.CANCELED.value}),
    OrderStatus.DELIVERED.value: frozenset({OrderStatus.CLOSED.value}),
    OrderStatus.CLOSED.value: frozenset(),
    OrderStatus.CANCELED.value: frozenset(),
}

# Linear progression used for before/after comparisons; canceled sits outside it.
STATUS_ORDER: List[str] = [
    OrderStatus.PLACED.value,
    OrderStatus.CLAIMED.value,
    OrderStatus.SHOPPING.value,
    OrderStatus.READY.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.CLOSED.value,
]

STATUS_LABELS: Dict[str, str] = {
    "placed": "Order Placed",
    "claimed": "Assigned to Shopper",
    "shopping": "Shopping in Progress",
    "ready": "Ready for Delivery",
    "delivered": "Delivered",
    "closed": "Completed",
    "canceled": "Canceled",
}

STATUS_DESCRIPTIONS: Dict[str, str] = {
    "placed": "Order has been placed and is awaiting assignment",
    "claimed": "A shopper has been assigned and will start shopping soon",
    "shopping": "Shopper is currently gathering items",
    "ready": "All items collected and ready for delivery",
    "delivered": "Order has been delivered to the property",
    "closed": "Order is complete and closed",
    "canceled": "Order has been canceled",
}

_STATUS_PHASES: Dict[str, str] = {
    "placed": "order_confirmation",
    "claimed": "order_assignment",
    "shopping": "shopping",
    "ready": "shopping",
    "delivered": "delivery",
    "closed": "completion",
    "canceled": "cancellation",
}


def _value(status: Optional[str]) -> Optional[str]:
    if isinstance(status, OrderStatus):
        return status.value
    return status


def is_known_status(status: Optional[str]) -> bool:
    return _value(status) in ALL_STATUSES


def is_legal_transition(from_status: Optional[str], to_status: Optional[str]) -> bool:
    """Return True when ``to_status`` is reachable from ``from_status`` in one step."""
    allowed = LEGAL_TRANSITIONS.get(_value(from_status))
    if allowed is None:
        return False
    return _value(to_status) in allowed


def get_next_statuses(status: Optional[str]) -> List[str]:
    """Legal targets from ``status`` in progression order (canceled last)."""
    allowed = LEGAL_TRANSITIONS.get(_value(status), frozenset())
    ordered = [s for s in STATUS_ORDER if s in allowed]
    if OrderStatus.CANCELED.value in allowed:
        ordered.append(OrderStatus.CANCELED.value)
    return ordered


def is_terminal(status: Optional[str]) -> bool:
    return _value(status) in TERMINAL_STATUSES


def get_status_index(status: Optional[str]) -> int:
    try:
        return STATUS_ORDER.index(_value(status))
    except ValueError:
        return -1


def is_status_before(status: Optional[str], other: Optional[str]) -> bool:
    a, b = get_status_index(status), get_status_index(other)
    if a == -1 or b == -1:
        return False
    return a < b


def is_status_after(status: Optional[str], other: Optional[str]) -> bool:
    a, b = get_status_index(status), get_status_index(other)
    if a == -1 or b == -1:
        return False
    return a > b


def get_status_label(status: Optional[str]) -> str:
    value = _value(status)
    return STATUS_LABELS.get(value, value or "")


def get_status_description(status: Optional[str]) -> str:
    return STATUS_DESCRIPTIONS.get(_value(status), "Unknown status")


def get_workflow_phase(status: Optional[str]) -> str:
    """Workflow log phase recorded for a transition into ``status``."""
    return _STATUS_PHASES.get(_value(status), "general")
