"""
Order event stream: persisted ``order_events`` rows, customer-facing
messages, and an in-process publish/subscribe bus per order.
"""
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.repositories import events as events_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.utils.order_status import get_status_label

logger = logging.getLogger(__name__)

EVENT_STATUS_CHANGED = "STATUS_CHANGED"
EVENT_ASSIGNED = "ASSIGNED"
EVENT_STOCKING_STARTED = "STOCKING_STARTED"
EVENT_STOCKED_IN_UNIT = "STOCKED_IN_UNIT"
EVENT_ITEM_UPDATED = "ITEM_UPDATED"
EVENT_ITEM_ADDED = "ITEM_ADDED"
EVENT_ITEM_REMOVED = "ITEM_REMOVED"
EVENT_SUBSTITUTION_SUGGESTED = "SUBSTITUTION_SUGGESTED"
EVENT_SUBSTITUTION_DECISION = "SUBSTITUTION_DECISION"

EVENT_TYPES = (
    EVENT_STATUS_CHANGED,
    EVENT_ASSIGNED,
    EVENT_STOCKING_STARTED,
    EVENT_STOCKED_IN_UNIT,
    EVENT_ITEM_UPDATED,
    EVENT_ITEM_ADDED,
    EVENT_ITEM_REMOVED,
    EVENT_SUBSTITUTION_SUGGESTED,
    EVENT_SUBSTITUTION_DECISION,
)

CUSTOMER_VISIBLE_EVENTS = frozenset({
    EVENT_STATUS_CHANGED,
    EVENT_ASSIGNED,
    EVENT_STOCKING_STARTED,
    EVENT_STOCKED_IN_UNIT,
    EVENT_ITEM_UPDATED,
})

EventHandler = Callable[[models.OrderEvent], Any]


def is_customer_visible(event_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
    """Whether the customer tracking view shows this event.

    Item updates are only shown once the shopper reports a picked quantity.
    """
    if event_type not in CUSTOMER_VISIBLE_EVENTS:
        return False
    if event_type == EVENT_ITEM_UPDATED:
        return (data or {}).get("qty_picked") is not None
    return True


def build_event_message(event_type: str, data: Optional[Dict[str, Any]] = None) -> str:
    data = data or {}
    item = data.get("item_name") or "An item"
    if event_type == EVENT_STATUS_CHANGED:
        return f"Order status changed to {get_status_label(data.get('to') or data.get('new_status'))}"
    if event_type == EVENT_ASSIGNED:
        role = data.get("role") or "staff member"
        name = data.get("staff_name")
        return f"{name} was assigned as your {role}" if name else f"A {role} was assigned to your order"
    if event_type == EVENT_STOCKING_STARTED:
        return "Your concierge has started stocking your rental"
    if event_type == EVENT_STOCKED_IN_UNIT:
        return "Your groceries have been stocked in your unit"
    if event_type == EVENT_ITEM_UPDATED:
        picked = data.get("qty_picked")
        if picked is not None:
            return f"{item}: {picked} picked"
        return f"{item} was updated"
    if event_type == EVENT_ITEM_ADDED:
        return f"{item} was added to your order"
    if event_type == EVENT_ITEM_REMOVED:
        return f"{item} was removed from your order"
    if event_type == EVENT_SUBSTITUTION_SUGGESTED:
        suggestion = data.get("suggested_product")
        if suggestion:
            return f"Substitution suggested for {item}: {suggestion}"
        return f"Substitution suggested for {item}"
    if event_type == EVENT_SUBSTITUTION_DECISION:
        decision = "approved" if data.get("approved") else "declined"
        return f"Substitution for {item} was {decision}"
    return event_type.replace("_", " ").capitalize()


class OrderEventBus:
    """In-process publish/subscribe keyed by order id.

    Subscribing the same handler twice registers it once. A failing handler
    is logged and does not stop delivery to the remaining handlers.
    """

    def __init__(self):
        # Handlers are keyed by equality so a re-bound method is the same subscriber
        self._subscribers: Dict[str, Dict[EventHandler, None]] = defaultdict(dict)
        self._lock = Lock()

    def subscribe(self, order_id: uuid.UUID | str, handler: EventHandler) -> Callable[[], None]:
        key = str(order_id)
        with self._lock:
            self._subscribers[key][handler] = None
        return lambda: self.unsubscribe(order_id, handler)

    def unsubscribe(self, order_id: uuid.UUID | str, handler: EventHandler) -> None:
        key = str(order_id)
        with self._lock:
            handlers = self._subscribers.get(key)
            if not handlers:
                return
            handlers.pop(handler, None)
            if not handlers:
                del self._subscribers[key]

    def subscriber_count(self, order_id: uuid.UUID | str) -> int:
        return len(self._subscribers.get(str(order_id), {}))

    def publish(self, event: models.OrderEvent) -> int:
        """Deliver ``event`` to the order's subscribers; returns the number reached."""
        with self._lock:
            handlers = list(self._subscribers.get(str(event.order_id), {}))
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception("order_event_handler_failed order_id=%s event_type=%s", event.order_id, event.event_type)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


_event_bus = OrderEventBus()


def get_event_bus() -> OrderEventBus:
    return _event_bus


def record_event(
    db: Session,
    order_id: uuid.UUID,
    event_type: str,
    actor_role: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    publish: bool = True,
) -> models.OrderEvent:
    """Insert an event in the caller's transaction and publish it on the bus."""
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown order event type: {event_type}")
    event = events_repo.create_event(db, order_id=order_id, event_type=event_type, actor_role=actor_role, data=data)
    if publish:
        get_event_bus().publish(event)
    return event


def list_events(
    db: Session,
    order_id: uuid.UUID,
    customer_view: bool = False,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    events = events_repo.get_events(db, order_id, skip=skip, limit=limit)
    result = []
    for e in events:
        if customer_view and not is_customer_visible(e.event_type, e.data):
            continue
        result.append({
            "id": e.id,
            "event_type": e.event_type,
            "actor_role": e.actor_role,
            "data": e.data,
            "message": build_event_message(e.event_type, e.data),
            "created_at": e.created_at,
        })
    return result


def fetch_snapshot(db: Session, order_id: uuid.UUID, event_limit: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """Order, items and event list in one payload, or None if unknown.

    Every event is included unless ``event_limit`` caps the list.
    """
    order = orders_repo.get_order(db, order_id)
    if order is None:
        return None
    return {
        "order": order,
        "items": list(order.items),
        "events": list_events(db, order_id, limit=event_limit),
    }
