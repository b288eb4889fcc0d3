import json
from datetime import timedelta

import pytest

from milkpick.extensions import db
from milkpick.models import Order, Product, Subscription, User
from milkpick.services.cadence import utc_today
from milkpick.services.pickup_service import ensure_qr_code
from tests.factories import add_card, auth, make_farm, make_order, make_product, make_subscription, make_user


@pytest.fixture
def world(app):
    """Customer + farmer + product, as plain ids/headers usable outside the app context."""
    with app.app_context():
        customer = make_user("customer")
        farmer = make_user("farmer")
        farm = make_farm(farmer)
        product = make_product(farm, price="5.00")
        other_customer = make_user("customer")
        return {
            "customer": auth(customer),
            "customer_id": customer.id,
            "other_customer": auth(other_customer),
            "farmer": auth(farmer),
            "farm_id": farm.id,
            "product_id": product.id,
        }


def _order(app, world, **kw):
    with app.app_context():
        customer = db.session.get(User, world["customer_id"])
        product = db.session.get(Product, world["product_id"])
        sub = make_subscription(customer, product)
        return make_order(sub, **kw).id


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_requires_bearer_token(client, world) -> None:
    assert client.get("/api/orders").status_code == 401
    assert client.get("/api/orders", headers={"Authorization": "Bearer wrong"}).status_code == 401
    resp = client.get("/api/orders", headers={"Authorization": "Token abc"})
    assert resp.status_code == 401
    assert "error" in resp.get_json()


def test_role_guard(client, world) -> None:
    assert client.get("/api/orders", headers=world["farmer"]).status_code == 403
    assert client.get("/api/farm/orders", headers=world["customer"]).status_code == 403


def test_create_subscription_materializes_first_order(app, client, world) -> None:
    today = utc_today()
    resp = client.post("/api/subscriptions", headers=world["customer"], json={
        "product_id": world["product_id"],
        "frequency": "weekly",
        "quantity": 2,
        "start_date": today.isoformat(),
    })

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["first_order"]["total_amount"] == "10.00"
    assert body["first_order"]["scheduled_date"] == today.isoformat()
    assert body["subscription"]["next_order_date"] == (today + timedelta(days=7)).isoformat()

    listing = client.get("/api/subscriptions", headers=world["customer"]).get_json()
    assert len(listing["subscriptions"]) == 1


def test_create_subscription_validation(client, world) -> None:
    resp = client.post("/api/subscriptions", headers=world["customer"], json={
        "product_id": world["product_id"], "frequency": "daily", "quantity": 1, "start_date": "2024-01-01",
    })
    assert resp.status_code == 400

    resp = client.post("/api/subscriptions", headers=world["customer"], json={
        "product_id": 9999, "frequency": "weekly", "quantity": 1, "start_date": "2024-01-01",
    })
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Product not found"


def test_unavailable_product(app, client, world) -> None:
    with app.app_context():
        product = db.session.get(Product, world["product_id"])
        product.available = False
        db.session.commit()

    resp = client.post("/api/subscriptions", headers=world["customer"], json={
        "product_id": world["product_id"], "frequency": "weekly", "quantity": 1, "start_date": "2024-01-01",
    })
    assert resp.status_code == 400


def test_preview_is_capped(client, world) -> None:
    today = utc_today()
    resp = client.get("/api/subscriptions/preview", headers=world["customer"], query_string={
        "start_date": today.isoformat(), "frequency": "weekly", "count": 50,
    })
    assert resp.status_code == 200
    assert len(resp.get_json()["dates"]) == 12

    default = client.get("/api/subscriptions/preview", headers=world["customer"], query_string={
        "start_date": today.isoformat(), "frequency": "monthly",
    })
    assert len(default.get_json()["dates"]) == 6


def test_cancel_subscription_cancels_upcoming_orders(app, client, world) -> None:
    today = utc_today()
    with app.app_context():
        customer = db.session.get(User, world["customer_id"])
        product = db.session.get(Product, world["product_id"])
        sub = make_subscription(customer, product)
        upcoming = make_order(sub, scheduled_date=today + timedelta(days=3)).id
        past = make_order(sub, scheduled_date=today - timedelta(days=3)).id
        sub_id = sub.id

    assert client.delete(f"/api/subscriptions/{sub_id}", headers=world["other_customer"]).status_code == 404
    resp = client.delete(f"/api/subscriptions/{sub_id}", headers=world["customer"])
    assert resp.status_code == 200
    assert resp.get_json()["cancelled_orders"] == 1

    with app.app_context():
        assert db.session.get(Subscription, sub_id).active is False
        assert db.session.get(Order, upcoming).status == "cancelled"
        assert db.session.get(Order, past).status == "pending"


def test_update_subscription_reprices_pending_orders(app, client, world) -> None:
    today = utc_today()
    with app.app_context():
        customer = db.session.get(User, world["customer_id"])
        product = db.session.get(Product, world["product_id"])
        sub = make_subscription(customer, product, quantity=1)
        upcoming = make_order(sub, scheduled_date=today + timedelta(days=3)).id
        sub_id = sub.id

    resp = client.put(f"/api/subscriptions/{sub_id}", headers=world["customer"], json={"quantity": 4})
    assert resp.status_code == 200
    assert resp.get_json()["subscription"]["quantity"] == 4

    with app.app_context():
        order = db.session.get(Order, upcoming)
        assert order.quantity == 4
        assert str(order.total_amount) == "20.00"


def test_customer_self_confirm(app, client, world) -> None:
    today = utc_today()
    due = _order(app, world, scheduled_date=today)
    early = _order(app, world, scheduled_date=today + timedelta(days=1))

    resp = client.post(f"/api/orders/{early}/confirm-pickup", headers=world["customer"])
    assert resp.status_code == 400

    resp = client.post(f"/api/orders/{due}/confirm-pickup", headers=world["customer"])
    assert resp.status_code == 200
    assert resp.get_json()["order"]["status"] == "picked_up"
    assert resp.get_json()["order"]["confirmation_method"] == "customer_self"

    again = client.post(f"/api/orders/{due}/confirm-pickup", headers=world["customer"])
    assert again.status_code == 409


def test_orders_are_private(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())
    assert client.get(f"/api/orders/{order_id}/qr", headers=world["other_customer"]).status_code == 404


def test_qr_and_farm_scan(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())

    first = client.get(f"/api/orders/{order_id}/qr", headers=world["customer"]).get_json()
    second = client.get(f"/api/orders/{order_id}/qr", headers=world["customer"]).get_json()
    assert first["qr_code"] == second["qr_code"]
    assert first["image"].startswith("data:image/svg+xml;base64,")

    svg = client.get(f"/api/orders/{order_id}/qr?format=svg", headers=world["customer"])
    assert svg.mimetype == "image/svg+xml"

    assert client.post("/api/farm/orders/scan", headers=world["farmer"], json={"qr_code": "bogus"}).status_code == 404
    resp = client.post("/api/farm/orders/scan", headers=world["farmer"], json={"qr_code": first["qr_code"]})
    assert resp.status_code == 200
    assert resp.get_json()["order"]["confirmation_method"] == "qr_code"


def test_scan_from_other_farm_forbidden(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())
    with app.app_context():
        token = ensure_qr_code(db.session.get(Order, order_id))
        rival = make_user("farmer")
        make_farm(rival, name="Rival Creamery")
        headers = auth(rival)

    assert client.post("/api/farm/orders/scan", headers=headers, json={"qr_code": token}).status_code == 403


def test_farm_accept_and_no_show(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())

    listing = client.get("/api/farm/orders", headers=world["farmer"]).get_json()
    assert [o["id"] for o in listing["orders"]] == [order_id]
    assert listing["orders"][0]["customer"]["id"] == world["customer_id"]

    assert client.post(f"/api/farm/orders/{order_id}/accept", headers=world["farmer"]).status_code == 200
    resp = client.post(f"/api/farm/orders/{order_id}/no-show", headers=world["farmer"])
    assert resp.get_json()["order"]["status"] == "no_show"
    assert client.post(f"/api/farm/orders/{order_id}/confirm-pickup", headers=world["farmer"]).status_code == 409


def test_edit_and_cancel_order(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today() + timedelta(days=2))

    resp = client.put(f"/api/orders/{order_id}", headers=world["customer"], json={"quantity": 3})
    assert resp.status_code == 200
    assert resp.get_json()["order"]["total_amount"] == "15.00"

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=world["customer"])
    assert resp.get_json()["order"]["status"] == "cancelled"
    assert client.put(f"/api/orders/{order_id}", headers=world["customer"], json={"quantity": 1}).status_code == 409


def test_pay_now(app, client, world, gateway) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())

    resp = client.post(f"/api/payments/orders/{order_id}/pay", headers=world["customer"])
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "missing_payment_method"

    with app.app_context():
        add_card(db.session.get(User, world["customer_id"]))

    resp = client.post(f"/api/payments/orders/{order_id}/pay", headers=world["customer"])
    assert resp.status_code == 200
    assert resp.get_json()["order"]["payment_status"] == "paid"

    history = client.get("/api/payments/history", headers=world["customer"]).get_json()
    assert [t["status"] for t in history["transactions"]] == ["succeeded"]

    refund = client.post(f"/api/payments/orders/{order_id}/refund", headers=world["farmer"])
    assert refund.status_code == 200
    assert refund.get_json()["order"]["payment_status"] == "refunded"


def test_payment_methods(client, world) -> None:
    resp = client.post("/api/payments/methods", headers=world["customer"], json={"payment_method_id": "pm_x"})
    assert resp.status_code == 201
    assert resp.get_json()["method"]["is_default"] is True

    methods = client.get("/api/payments/methods", headers=world["customer"]).get_json()["methods"]
    assert len(methods) == 1
    assert client.post("/api/payments/methods", headers=world["customer"], json={}).status_code == 400

    method_id = methods[0]["id"]
    assert client.delete(f"/api/payments/methods/{method_id}", headers=world["other_customer"]).status_code == 404
    assert client.delete(f"/api/payments/methods/{method_id}", headers=world["customer"]).status_code == 200


def test_connect_onboarding(client, world) -> None:
    status = client.get("/api/payments/connect/status", headers=world["farmer"]).get_json()
    assert status == {"connected": False}

    link = client.post("/api/payments/connect/onboard", headers=world["farmer"]).get_json()
    assert link["account_id"] == "acct_test"

    status = client.get("/api/payments/connect/status", headers=world["farmer"]).get_json()
    assert status["connected"] is True
    assert status["charges_enabled"] is True


def test_stripe_webhook(app, client, world) -> None:
    order_id = _order(app, world, scheduled_date=utc_today())
    payload = json.dumps({
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_web", "amount_received": 1000, "metadata": {"order_id": str(order_id)}}},
    })

    bad = client.post("/webhooks/stripe", data=payload, headers={"Stripe-Signature": "forged"})
    assert bad.status_code == 400

    ok = client.post("/webhooks/stripe", data=payload, headers={"Stripe-Signature": "good-signature"})
    assert ok.status_code == 200
    assert ok.get_json() == {"received": True, "outcome": "processed"}

    with app.app_context():
        assert db.session.get(Order, order_id).payment_status == "paid"


def test_notification_preferences(client, world) -> None:
    prefs = client.get("/api/notifications/preferences", headers=world["customer"]).get_json()["preferences"]
    assert prefs["sms_enabled"] is True

    resp = client.put("/api/notifications/preferences", headers=world["customer"],
                      json={"sms_enabled": False, "weekly_summary": False, "bogus": True})
    assert resp.status_code == 200
    updated = resp.get_json()["preferences"]
    assert updated["sms_enabled"] is False
    assert updated["weekly_summary"] is False
    assert "bogus" not in updated

    assert client.put("/api/notifications/preferences", headers=world["customer"], json={}).status_code == 400
    assert client.get("/api/notifications", headers=world["customer"]).get_json() == {"notifications": []}
