import uuid


def _act(client, order, headers, action, **params):
    return client.post(f"/workflow/orders/{order.id}/actions", json={"action": action, **params}, headers=headers)


def test_shopper_runs_order_through_shopping(client, db_session, make_order, shopper, auth_headers):
    order = make_order()
    headers = auth_headers(shopper.email)

    r = _act(client, order, headers, "accept_order")
    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["action"], body["previous_status"], body["new_status"]) == ("accept_order", "placed", "claimed")
    assert body["request_id"]

    assert _act(client, order, headers, "start_shopping").json()["new_status"] == "shopping"
    first, second = order.items
    r = _act(client, order, headers, "mark_item_found", item_id=str(first.id), found_quantity=1, notes="Only one left")
    assert r.status_code == 200
    r = _act(client, order, headers, "request_substitution", item_id=str(second.id), reason="Out of stock", suggested_product="Papaya")
    assert r.status_code == 200
    assert _act(client, order, headers, "complete_shopping").json()["new_status"] == "ready"

    db_session.expire_all()
    assert (first.shopping_status, first.found_quantity, first.shopper_notes) == ("found", 1, "Only one left")
    assert second.shopping_status == "substitution_needed"


def test_rejected_action_maps_to_http(client, make_order, driver, auth_headers):
    order = make_order()
    r = _act(client, order, auth_headers(driver.email), "accept_order")
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "FORBIDDEN"
    assert r.json()["detail"]["retryable"] is False

    r = _act(client, order, auth_headers(driver.email), "levitate")
    assert r.status_code == 400

    r = client.post(f"/workflow/orders/{uuid.uuid4()}/actions", json={"action": "close_order"}, headers=auth_headers(driver.email))
    assert r.status_code == 404


def test_transition_is_guarded_and_compare_and_set(client, make_order, admin, shopper, auth_headers):
    order = make_order(status="claimed")

    r = client.post(
        f"/workflow/orders/{order.id}/transition",
        json={"to_status": "shopping", "expected_status": "claimed"},
        headers=auth_headers(shopper.email),
    )
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "FORBIDDEN"

    r = client.post(
        f"/workflow/orders/{order.id}/transition",
        json={"to_status": "claimed", "expected_status": "placed"},
        headers=auth_headers(admin.email),
    )
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert (detail["code"], detail["retryable"]) == ("STALE_WRITE", True)

    r = client.post(
        f"/workflow/orders/{order.id}/transition",
        json={"to_status": "delivered", "expected_status": "claimed"},
        headers=auth_headers(admin.email),
    )
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "ILLEGAL_TRANSITION"

    r = client.post(
        f"/workflow/orders/{order.id}/transition",
        json={"to_status": "shopping", "expected_status": "claimed"},
        headers=auth_headers(admin.email),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "shopping"
    assert r.json()["shopping_started_at"] is not None


def test_assignment_endpoints(client, make_order, admin, driver, shopper, auth_headers):
    order = make_order(status="ready")
    admin_headers = auth_headers(admin.email)

    r = client.post(
        "/assignments/",
        json={"order_id": str(order.id), "staff_id": str(driver.id), "role": "driver", "notes": "Afternoon run"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["message"] == "Assigned Dee Driver as driver"
    assert body["order_details"]["assigned_driver_id"] == str(driver.id)

    r = client.get(f"/assignments/order/{order.id}", headers=auth_headers(shopper.email))
    assert [(a["role"], a["user_id"]) for a in r.json()] == [("driver", str(driver.id))]

    r = client.post(
        "/assignments/",
        json={"order_id": str(order.id), "staff_id": str(shopper.id), "role": "shopper"},
        headers=auth_headers(driver.email),
    )
    assert r.status_code == 403

    r = client.post(
        "/assignments/",
        json={"order_id": str(order.id), "staff_id": str(driver.id), "role": "pilot"},
        headers=admin_headers,
    )
    assert r.status_code == 422

    assert client.delete(f"/assignments/order/{order.id}/driver", headers=admin_headers).status_code == 204
    assert client.get(f"/assignments/order/{order.id}", headers=admin_headers).json() == []
    r = client.delete(f"/assignments/order/{order.id}/driver", headers=admin_headers)
    assert r.status_code == 400


def test_assigned_shopper_uses_guarded_transition(client, make_order, shopper, assign, auth_headers):
    order = assign(make_order(status="claimed"), shopper, "shopper")
    headers = auth_headers(shopper.email)

    r = client.post(f"/workflow/orders/{order.id}/transition", json={"to_status": "shopping", "expected_status": "claimed"}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "shopping"

    r = client.post(f"/workflow/orders/{order.id}/transition", json={"to_status": "ready", "expected_status": "shopping"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "BUSINESS_RULE_VIOLATION"


def test_customer_answers_substitution(client, db_session, make_order, make_user, shopper, assign, auth_headers):
    order = assign(make_order(status="shopping"), shopper, "shopper")
    item = order.items[0]
    r = _act(client, order, auth_headers(shopper.email), "request_substitution", item_id=str(item.id), reason="Sold out", suggested_product="Decaf")
    assert r.status_code == 200

    customer = make_user("guest@example.com")
    r = _act(client, order, auth_headers(customer.email), "approve_substitution", item_id=str(item.id))
    assert r.status_code == 200, r.text
    assert r.json()["action"] == "approve_substitution"

    db_session.expire_all()
    assert item.shopping_status == "substituted"

    r = client.get("/notifications/", headers=auth_headers(customer.email))
    assert "substitution_approved" in {n["notification_type"] for n in r.json()["notifications"]}
