import uuid

import pytest

from tulemar.db.models import OrderNotification, OrderWorkflowLog
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.services import order_events
from tulemar.services.order_workflow_service import Actor, OrderWorkflowService
from tulemar.services.workflow_errors import (
    BusinessRuleError,
    ForbiddenActionError,
    IllegalTransitionError,
    InvalidParametersError,
    ItemNotFoundError,
    OrderNotFoundError,
    StaleWriteError,
)


def _log_actions(db, order):
    return [row.action for row in db.query(OrderWorkflowLog).filter_by(order_id=order.id).order_by(OrderWorkflowLog.timestamp)]


def test_advance_order_status_moves_and_logs(actor_for, db_session, make_order, admin):
    order = make_order()
    service = OrderWorkflowService(db_session)

    updated = service.advance_order_status(order.id, "claimed", "placed", actor_for(admin), notes="manual")

    assert updated.status == "claimed"
    entry = db_session.query(OrderWorkflowLog).filter_by(order_id=order.id, action="status_changed").one()
    assert (entry.previous_status, entry.new_status, entry.notes) == ("placed", "claimed", "manual")
    assert entry.actor_role == "admin"
    events = order_events.list_events(db_session, order.id)
    assert events[0]["data"] == {"from": "placed", "to": "claimed"}


def test_advance_order_status_rejects_illegal_jump(actor_for, db_session, make_order, admin):
    order = make_order()
    with pytest.raises(IllegalTransitionError):
        OrderWorkflowService(db_session).advance_order_status(order.id, "delivered", "placed", actor_for(admin))
    db_session.refresh(order)
    assert order.status == "placed"


def test_advance_order_status_stale_expected_status(actor_for, db_session, make_order, admin):
    order = make_order(status="claimed")
    with pytest.raises(StaleWriteError) as exc:
        OrderWorkflowService(db_session).advance_order_status(order.id, "claimed", "placed", actor_for(admin))
    assert exc.value.retryable is True
    assert exc.value.status_code == 409
    assert db_session.query(OrderWorkflowLog).filter_by(order_id=order.id).count() == 0


def test_advance_order_status_validation(actor_for, db_session, make_order, make_user, admin, driver):
    order = make_order()
    service = OrderWorkflowService(db_session)
    with pytest.raises(InvalidParametersError):
        service.advance_order_status(order.id, "teleported", "placed", actor_for(admin))
    with pytest.raises(ForbiddenActionError):
        service.advance_order_status(order.id, "claimed", "placed", actor_for(driver))
    with pytest.raises(ForbiddenActionError):
        service.advance_order_status(order.id, "claimed", "placed", actor_for(make_user("guest@example.com")))
    with pytest.raises(OrderNotFoundError):
        service.advance_order_status(uuid.uuid4(), "claimed", "placed", actor_for(admin))


def test_assigned_shopper_advances_own_order(actor_for, db_session, make_order, make_user, shopper, assign):
    order = assign(make_order(status="claimed"), shopper, "shopper")
    service = OrderWorkflowService(db_session)

    outsider = make_user("other-shopper@tulemar.shop", roles=("shopper",))
    with pytest.raises(ForbiddenActionError):
        service.advance_order_status(order.id, "shopping", "claimed", actor_for(outsider))

    updated = service.advance_order_status(order.id, "shopping", "claimed", actor_for(shopper))
    assert updated.status == "shopping"
    assert updated.shopping_started_at is not None

    with pytest.raises(BusinessRuleError) as exc:
        service.advance_order_status(order.id, "ready", "shopping", actor_for(shopper))
    assert "2 item(s)" in exc.value.message
    with pytest.raises(ForbiddenActionError):
        service.advance_order_status(order.id, "canceled", "shopping", actor_for(shopper))


def test_shopper_claims_through_guarded_transition(actor_for, db_session, make_order, make_user, shopper):
    order = make_order()
    updated = OrderWorkflowService(db_session).advance_order_status(order.id, "claimed", "placed", actor_for(shopper))

    assert updated.assigned_shopper_id == shopper.id
    assert assignments_repo.get_assignment(db_session, order.id, "shopper").user_id == shopper.id

    rival = make_user("rival@tulemar.shop", roles=("shopper",))
    again = make_order()
    OrderWorkflowService(db_session).advance_order_status(again.id, "claimed", "placed", actor_for(rival))
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).advance_order_status(again.id, "claimed", "placed", actor_for(shopper))


def test_assigned_driver_can_deliver(actor_for, db_session, make_order, driver, assign):
    order = assign(make_order(status="ready", item_status="found"), driver, "driver")
    updated = OrderWorkflowService(db_session).advance_order_status(order.id, "delivered", "ready", actor_for(driver))
    assert updated.delivery_completed_at is not None


def test_terminal_orders_stay_terminal(actor_for, db_session, make_order, admin):
    order = make_order(status="canceled")
    with pytest.raises(IllegalTransitionError):
        OrderWorkflowService(db_session).advance_order_status(order.id, "placed", "canceled", actor_for(admin))


def test_shopping_timestamps_are_stamped(actor_for, db_session, make_order, admin):
    order = make_order(status="claimed")
    service = OrderWorkflowService(db_session)
    updated = service.advance_order_status(order.id, "shopping", "claimed", actor_for(admin))
    assert updated.shopping_started_at is not None


def test_events_publish_only_after_commit(actor_for, db_session, make_order, admin):
    order = make_order()
    seen = []

    def handler(event):
        seen.append(event.event_type)

    order_events.get_event_bus().subscribe(order.id, handler)
    with pytest.raises(StaleWriteError):
        OrderWorkflowService(db_session).advance_order_status(order.id, "canceled", "claimed", actor_for(admin))
    assert seen == []

    OrderWorkflowService(db_session).advance_order_status(order.id, "canceled", "placed", actor_for(admin))
    assert seen == ["STATUS_CHANGED"]


def test_full_happy_path(actor_for, db_session, make_order, shopper, driver, admin):
    order = make_order()
    service = OrderWorkflowService(db_session)

    result = service.perform_action(order.id, "accept_order", actor_for(shopper))
    assert (result["previous_status"], result["new_status"]) == ("placed", "claimed")
    assert result["success"] is True and result["request_id"]

    service.perform_action(order.id, "start_shopping", actor_for(shopper))
    for item in order.items:
        service.perform_action(order.id, "mark_item_found", actor_for(shopper), item_id=str(item.id))
    service.perform_action(order.id, "complete_shopping", actor_for(shopper))
    service.perform_action(order.id, "start_delivery", actor_for(driver))
    service.perform_action(order.id, "complete_delivery", actor_for(driver), notes="Left with concierge")
    service.perform_action(order.id, "close_order", actor_for(admin))

    db_session.refresh(order)
    assert order.status == "closed"
    assert order.assigned_shopper_id == shopper.id
    assert order.assigned_driver_id == driver.id
    assert order.shopping_completed_at is not None
    assert order.delivery_started_at is not None
    assert order.delivery_completed_at is not None
    assert {a.role: a.status for a in assignments_repo.get_assignments_for_order(db_session, order.id)} == {
        "shopper": "completed",
        "driver": "completed",
    }
    actions = _log_actions(db_session, order)
    for action in ("accept_order", "start_shopping", "mark_item_found", "complete_shopping", "start_delivery", "complete_delivery", "close_order"):
        assert action in actions


def test_accept_order_rejects_other_shopper(actor_for, db_session, make_order, make_user, shopper, assign):
    order = make_order()
    other = make_user("other-shopper@tulemar.shop", roles=("shopper",))
    assign(order, other, "shopper")
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).perform_action(order.id, "accept_order", actor_for(shopper))


def test_accept_order_requires_shopper_role(actor_for, db_session, make_order, driver):
    order = make_order()
    with pytest.raises(ForbiddenActionError):
        OrderWorkflowService(db_session).perform_action(order.id, "accept_order", actor_for(driver))


def test_rejected_action_is_audited(actor_for, db_session, make_order, make_user):
    order = make_order()
    customer = make_user("nosy@example.com")
    with pytest.raises(ForbiddenActionError):
        OrderWorkflowService(db_session).perform_action(order.id, "start_shopping", actor_for(customer))

    row = db_session.query(OrderWorkflowLog).filter_by(order_id=order.id).one()
    assert row.action == "start_shopping_failure"
    assert row.phase == "audit"
    assert row.metadata_json["error_code"] == "FORBIDDEN"
    assert row.metadata_json["request_id"]


def test_unknown_action_and_missing_order(actor_for, db_session, make_order, admin):
    service = OrderWorkflowService(db_session)
    with pytest.raises(InvalidParametersError):
        service.perform_action(make_order().id, "teleport", actor_for(admin))
    with pytest.raises(OrderNotFoundError):
        service.perform_action(uuid.uuid4(), "close_order", actor_for(admin))


def test_item_actions_require_shopping_status(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="claimed"), shopper, "shopper")
    item = order.items[0]
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).perform_action(order.id, "mark_item_found", actor_for(shopper), item_id=item.id)


def test_item_actions_validate_item(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    service = OrderWorkflowService(db_session)
    with pytest.raises(InvalidParametersError):
        service.perform_action(order.id, "mark_item_found", actor_for(shopper))
    with pytest.raises(InvalidParametersError):
        service.perform_action(order.id, "mark_item_found", actor_for(shopper), item_id="not-a-uuid")
    with pytest.raises(ItemNotFoundError):
        service.perform_action(order.id, "mark_item_found", actor_for(shopper), item_id=uuid.uuid4())


def test_mark_item_found_partial_quantity(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    item = order.items[1]

    OrderWorkflowService(db_session).perform_action(
        order.id, "mark_item_found", actor_for(shopper), item_id=item.id, found_quantity=3, notes="Only 3 ripe",
    )

    db_session.refresh(item)
    assert (item.shopping_status, item.found_quantity, item.shopper_notes) == ("found", 3, "Only 3 ripe")
    customer_events = order_events.list_events(db_session, order.id, customer_view=True)
    assert customer_events[-1]["data"]["qty_picked"] == 3


def test_mark_item_unavailable_and_substitution(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    first, second = order.items
    service = OrderWorkflowService(db_session)

    service.perform_action(order.id, "mark_item_unavailable", actor_for(shopper), item_id=first.id)
    with pytest.raises(InvalidParametersError):
        service.perform_action(order.id, "request_substitution", actor_for(shopper), item_id=second.id, reason="  ")
    service.perform_action(
        order.id, "request_substitution", actor_for(shopper), item_id=second.id, reason="Out of stock", suggested_product="Papaya",
    )

    db_session.refresh(first)
    db_session.refresh(second)
    assert (first.shopping_status, first.found_quantity) == ("unavailable", 0)
    assert second.shopping_status == "substitution_needed"
    assert second.substitution_data["suggested_product"] == "Papaya"
    types = [e["event_type"] for e in order_events.list_events(db_session, order.id)]
    assert "SUBSTITUTION_SUGGESTED" in types


def test_complete_shopping_blocks_pending_items(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    with pytest.raises(BusinessRuleError) as exc:
        OrderWorkflowService(db_session).perform_action(order.id, "complete_shopping", actor_for(shopper))
    assert "2 item(s)" in exc.value.message
    db_session.refresh(order)
    assert order.status == "shopping"


def test_start_delivery_rules(actor_for, db_session, make_order, make_user, driver, assign):
    order = make_order(status="shopping", item_status="found")
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).perform_action(order.id, "start_delivery", actor_for(driver))

    ready = make_order(status="ready", item_status="found")
    other_driver = make_user("other-driver@tulemar.shop", roles=("driver",))
    assign(ready, other_driver, "driver")
    with pytest.raises(ForbiddenActionError):
        OrderWorkflowService(db_session).perform_action(ready.id, "start_delivery", actor_for(driver))

    OrderWorkflowService(db_session).perform_action(ready.id, "start_delivery", actor_for(other_driver))
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).perform_action(ready.id, "start_delivery", actor_for(other_driver))


def test_complete_delivery_requires_started_delivery(actor_for, db_session, make_order, driver, assign):
    order = assign(make_order(status="ready", item_status="found"), driver, "driver")
    with pytest.raises(BusinessRuleError):
        OrderWorkflowService(db_session).perform_action(order.id, "complete_delivery", actor_for(driver))


def test_close_order_is_admin_only(actor_for, db_session, make_order, shopper):
    order = make_order(status="delivered", item_status="found")
    with pytest.raises(ForbiddenActionError):
        OrderWorkflowService(db_session).perform_action(order.id, "close_order", actor_for(shopper))


def test_customer_can_cancel_only_while_placed(actor_for, db_session, make_order, make_user):
    customer = make_user("guest@example.com")
    placed = make_order(customer_email="guest@example.com")
    claimed = make_order(status="claimed", customer_email="guest@example.com")
    service = OrderWorkflowService(db_session)

    result = service.perform_action(placed.id, "cancel_order", actor_for(customer), reason="Plans changed")
    assert result["new_status"] == "canceled"
    with pytest.raises(BusinessRuleError):
        service.perform_action(claimed.id, "cancel_order", actor_for(customer))

    stranger = Actor(id=None, roles=frozenset({"client"}), email="someone@example.com")
    with pytest.raises(ForbiddenActionError):
        service.perform_action(claimed.id, "cancel_order", stranger)


def test_concurrent_accept_only_one_wins(actor_for, db_session, make_order, make_user):
    order = make_order()
    first = make_user("first@tulemar.shop", roles=("shopper",))
    second = make_user("second@tulemar.shop", roles=("shopper",))

    # Second writer still believes the order is placed
    stale = orders_repo.get_order(db_session, order.id)
    OrderWorkflowService(db_session).perform_action(order.id, "accept_order", actor_for(first))

    service = OrderWorkflowService(db_session)
    with pytest.raises(StaleWriteError):
        service.apply_transition(stale, "claimed", "placed", actor_for(second), values={"assigned_shopper_id": second.id})
    db_session.rollback()

    db_session.refresh(order)
    assert order.assigned_shopper_id == first.id


def _order_with_substitution(actor_for, db_session, make_order, shopper, assign):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    item = order.items[1]
    OrderWorkflowService(db_session).perform_action(
        order.id, "request_substitution", actor_for(shopper), item_id=item.id, reason="Out of stock", suggested_product="Papaya",
    )
    return order, item


def test_customer_approves_substitution(actor_for, db_session, make_order, make_user, shopper, assign):
    order, item = _order_with_substitution(actor_for, db_session, make_order, shopper, assign)
    customer = make_user("guest@example.com")

    result = OrderWorkflowService(db_session).perform_action(order.id, "approve_substitution", actor_for(customer), item_id=item.id)

    assert (result["previous_status"], result["new_status"]) == ("shopping", "shopping")
    db_session.refresh(item)
    assert (item.shopping_status, item.shopper_notes) == ("substituted", "Substitution approved")
    assert item.substitution_data["decision"] == "approved"
    assert item.substitution_data["suggested_product"] == "Papaya"
    decision = order_events.list_events(db_session, order.id)[-1]
    assert decision["event_type"] == "SUBSTITUTION_DECISION"
    assert decision["message"] == f"Substitution for {item.product_name} was approved"
    sent = {
        n.recipient_type: n.message_content
        for n in db_session.query(OrderNotification).filter_by(order_id=order.id, notification_type="substitution_approved")
    }
    assert sent["shopper"] == f"Substitution approved for order #{order.order_number}: pick Papaya instead of {item.product_name}."
    assert "client" in sent
    assert "approve_substitution" in _log_actions(db_session, order)


def test_customer_declines_substitution(actor_for, db_session, make_order, make_user, shopper, assign):
    order, item = _order_with_substitution(actor_for, db_session, make_order, shopper, assign)
    customer = make_user("guest@example.com")

    OrderWorkflowService(db_session).perform_action(
        order.id, "decline_substitution", actor_for(customer), item_id=item.id, notes="Skip it",
    )

    db_session.refresh(item)
    assert (item.shopping_status, item.found_quantity, item.shopper_notes) == ("unavailable", 0, "Skip it")
    assert order_events.list_events(db_session, order.id)[-1]["data"]["approved"] is False
    assert db_session.query(OrderNotification).filter_by(order_id=order.id, notification_type="substitution_rejected").count() == 2


def test_substitution_decision_rules(actor_for, db_session, make_order, make_user, shopper, assign, admin):
    order, item = _order_with_substitution(actor_for, db_session, make_order, shopper, assign)
    service = OrderWorkflowService(db_session)

    with pytest.raises(ForbiddenActionError):
        service.perform_action(order.id, "approve_substitution", actor_for(shopper), item_id=item.id)
    with pytest.raises(BusinessRuleError):
        service.perform_action(order.id, "approve_substitution", actor_for(admin), item_id=order.items[0].id)

    service.perform_action(order.id, "decline_substitution", actor_for(admin), item_id=item.id)
    with pytest.raises(BusinessRuleError):
        service.perform_action(order.id, "approve_substitution", actor_for(admin), item_id=item.id)
    assert "approve_substitution_failure" in _log_actions(db_session, order)


def test_substitution_cannot_be_decided_once_delivery_started(actor_for, db_session, make_order, make_user, admin):
    order = make_order(status="ready", item_status="substitution_needed")
    service = OrderWorkflowService(db_session)
    service.perform_action(order.id, "start_delivery", actor_for(admin))

    with pytest.raises(BusinessRuleError):
        service.perform_action(order.id, "approve_substitution", actor_for(admin), item_id=order.items[0].id)
