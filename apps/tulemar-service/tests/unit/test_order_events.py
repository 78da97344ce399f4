import pytest

from tulemar.services import order_events
from tulemar.services.order_events import OrderEventBus


def test_record_event_persists_and_publishes(db_session, make_order):
    order = make_order()
    received = []
    order_events.get_event_bus().subscribe(order.id, received.append)

    event = order_events.record_event(db_session, order.id, "STATUS_CHANGED", actor_role="admin", data={"from": "placed", "to": "claimed"})
    db_session.commit()

    assert received == [event]
    rows = order_events.list_events(db_session, order.id)
    assert [r["event_type"] for r in rows] == ["STATUS_CHANGED"]
    assert rows[0]["message"] == "Order status changed to Assigned to Shopper"


def test_record_event_rejects_unknown_type(db_session, make_order):
    order = make_order()
    with pytest.raises(ValueError):
        order_events.record_event(db_session, order.id, "TELEPORTED")


def test_customer_view_hides_internal_events(db_session, make_order):
    order = make_order()
    order_events.record_event(db_session, order.id, "ITEM_UPDATED", data={"item_name": "Mango"})
    order_events.record_event(db_session, order.id, "ITEM_UPDATED", data={"item_name": "Mango", "qty_picked": 3})
    order_events.record_event(db_session, order.id, "SUBSTITUTION_SUGGESTED", data={"item_name": "Coffee"})
    db_session.commit()

    customer = order_events.list_events(db_session, order.id, customer_view=True)
    assert [e["message"] for e in customer] == ["Mango: 3 picked"]
    assert len(order_events.list_events(db_session, order.id)) == 3


def test_bus_dedupes_handlers_and_isolates_failures():
    bus = OrderEventBus()
    calls = []

    def record(event):
        calls.append(event)

    def boom(event):
        raise RuntimeError("handler down")

    class Listener:
        def __init__(self):
            self.seen = []

        def on_event(self, event):
            self.seen.append(event.event_type)

    listener = Listener()
    bus.subscribe("o1", record)
    bus.subscribe("o1", record)
    bus.subscribe("o1", boom)
    bus.subscribe("o1", listener.on_event)
    bus.subscribe("o1", listener.on_event)
    assert bus.subscriber_count("o1") == 3

    class _Event:
        order_id = "o1"
        event_type = "ASSIGNED"

    assert bus.publish(_Event()) == 2
    assert len(calls) == 1
    assert listener.seen == ["ASSIGNED"]

    bus.unsubscribe("o1", listener.on_event)
    assert bus.subscriber_count("o1") == 2


def test_unsubscribe_callback_stops_delivery():
    bus = OrderEventBus()
    def record(event):
        pass

    unsubscribe = bus.subscribe("o2", record)
    assert bus.subscriber_count("o2") == 1
    unsubscribe()
    assert bus.subscriber_count("o2") == 0


@pytest.mark.parametrize(
    "event_type,data,message",
    [
        ("ASSIGNED", {"role": "shopper", "staff_name": "Sam"}, "Sam was assigned as your shopper"),
        ("ASSIGNED", {"role": "driver"}, "A driver was assigned to your order"),
        ("SUBSTITUTION_DECISION", {"item_name": "Milk", "approved": True}, "Substitution for Milk was approved"),
        ("STOCKED_IN_UNIT", {}, "Your groceries have been stocked in your unit"),
    ],
)
def test_build_event_message(event_type, data, message):
    assert order_events.build_event_message(event_type, data) == message


def test_fetch_snapshot(db_session, make_order):
    order = make_order()
    assert order_events.fetch_snapshot(db_session, order.id)["order"].id == order.id
    assert len(order_events.fetch_snapshot(db_session, order.id)["items"]) == 2


def test_event_lists_are_not_truncated(db_session, make_order):
    order = make_order()
    for n in range(205):
        order_events.record_event(db_session, order.id, "ITEM_UPDATED", data={"item_name": "Mango", "qty_picked": n}, publish=False)
    db_session.commit()

    assert len(order_events.list_events(db_session, order.id)) == 205
    assert len(order_events.fetch_snapshot(db_session, order.id)["events"]) == 205
    assert len(order_events.fetch_snapshot(db_session, order.id, event_limit=10)["events"]) == 10
    page = order_events.list_events(db_session, order.id, skip=200, limit=50)
    assert len(page) == 5
