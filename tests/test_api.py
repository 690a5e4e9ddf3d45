from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.dependencies import get_clock, get_unit_of_work
from app.main import app
from app.models.order import OrderStatus

PREFIX = "/api/v1"


@pytest.fixture
def client(uow, clock, session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_unit_of_work] = lambda: uow
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_database_health(client):
    response = client.get("/health/db")
    assert response.status_code == 200
    assert response.json()["database"] == "reachable"


def test_order_invoice_flow(client, factory):
    plan = factory.plan(max_pickups=4, kg_limit=Decimal("50"))
    sub = factory.subscription(plan)
    order = factory.order(user_id=sub.user_id)

    draft = client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={
            "order_mode": "BOTH",
            "items": [{"type": "SERVICE", "name": "Wash & Fold", "quantity": "2", "unit_price": 15000}],
            "tax": 1000,
            "subscription_selections": [{"subscription_id": str(sub.id)}],
        },
    )
    assert draft.status_code == 200
    assert draft.json()["status"] == "DRAFT"
    assert draft.json()["total"] == 31000

    ack = client.post(
        f"{PREFIX}/orders/{order.id}/invoices/ack/issue",
        json={"apply_subscription": True, "weight_kg": "12"},
    )
    assert ack.status_code == 200
    assert ack.json()["code"] == "ACK-20260310-0001"

    summary = client.get(f"{PREFIX}/subscriptions/{sub.id}").json()
    assert summary["remaining_pickups"] == 3
    assert Decimal(summary["remaining_kg"]) == Decimal("38")

    usage = client.get(f"{PREFIX}/subscriptions/{sub.id}/usage").json()
    assert len(usage["usages"]) == 1
    assert usage["usages"][0]["order_id"] == str(order.id)

    factory.set_order_status(order.id, OrderStatus.DELIVERED)
    client.put(
        f"{PREFIX}/orders/{order.id}/invoices/final/draft",
        json={"items": [{"type": "SERVICE", "name": "Wash & Fold", "quantity": "2", "unit_price": 15000}], "subscription_usage_kg": "15"},
    )
    final = client.post(f"{PREFIX}/orders/{order.id}/invoices/final/issue")
    assert final.status_code == 200
    assert final.json()["code"] == "INV-20260310-0001"

    payment = client.post(
        f"{PREFIX}/orders/{order.id}/payment",
        json={"provider": "UPI", "status": "CAPTURED", "amount_paise": 30000},
    )
    assert payment.status_code == 200
    assert payment.json()["status"] == "CAPTURED"

    invoices = client.get(f"{PREFIX}/orders/{order.id}/invoices").json()
    assert [i["type"] for i in invoices] == ["ACKNOWLEDGEMENT", "FINAL"]
    assert invoices[1]["payment_status"] == "PAID"


def test_domain_errors_become_standard_responses(client, factory):
    plan = factory.plan()
    sub = factory.subscription(plan, remaining_pickups=0)
    order = factory.order(user_id=sub.user_id)
    client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={"order_mode": "SUBSCRIPTION_ONLY", "subscription_selections": [{"subscription_id": str(sub.id)}]},
    )

    response = client.post(f"{PREFIX}/orders/{order.id}/invoices/ack/issue", json={"apply_subscription": True})

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "INSUFFICIENT_BALANCE"
    assert body["details"]["subscription_id"] == str(sub.id)


def test_validation_error_is_422(client, factory):
    order = factory.order()
    response = client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={"items": [{"type": "SERVICE", "name": "Wash", "unit_price": 100, "amount": -5}]},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION"


def test_unknown_invoice_is_404(client):
    response = client.get(f"{PREFIX}/invoices/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_void_and_pdf_endpoints(client, factory):
    order = factory.order()
    draft = client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={"items": [{"type": "SERVICE", "name": "Wash", "unit_price": 100}]},
    ).json()
    client.post(f"{PREFIX}/orders/{order.id}/invoices/ack/issue")

    pdf = client.post(f"{PREFIX}/invoices/{draft['id']}/pdf")
    assert pdf.json()["pdf_url"] == f"/api/invoices/{draft['id']}/pdf"

    voided = client.post(f"{PREFIX}/invoices/{draft['id']}/void", json={"reason": "duplicate"})
    assert voided.json()["status"] == "VOID"
    again = client.post(f"{PREFIX}/invoices/{draft['id']}/void")
    assert again.status_code == 409
    assert again.json()["error_code"] == "INVALID_STATUS_TRANSITION"


def test_subscription_purchase_override_and_reverse(client, factory):
    plan = factory.plan(price_paise=0)
    user_id = factory.order().user_id

    purchased = client.post(f"{PREFIX}/subscriptions/purchase", json={"user_id": str(user_id), "plan_id": str(plan.id)})
    assert purchased.status_code == 201
    sub_id = purchased.json()["subscription_id"]
    assert purchased.json()["invoice_code"].startswith("SUB-20260310-")

    invoice = client.get(f"{PREFIX}/invoices/{purchased.json()['invoice_id']}").json()
    assert invoice["payment_status"] == "PAID"

    overridden = client.post(f"{PREFIX}/subscriptions/{sub_id}/override", json={"remaining_pickups": 2, "reason": "promo"})
    assert overridden.status_code == 200
    assert overridden.json()["remaining_pickups"] == 2

    order = factory.order(user_id=user_id)
    client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={"order_mode": "SUBSCRIPTION_ONLY", "subscription_selections": [{"subscription_id": sub_id}]},
    )
    client.post(f"{PREFIX}/orders/{order.id}/invoices/ack/issue", json={"apply_subscription": True})
    assert client.get(f"{PREFIX}/subscriptions/{sub_id}").json()["remaining_pickups"] == 1

    reversed_usage = client.post(f"{PREFIX}/subscriptions/{sub_id}/usage/{order.id}/reverse")
    assert reversed_usage.status_code == 200
    assert reversed_usage.json()["reversed_at"] is not None
    assert client.get(f"{PREFIX}/subscriptions/{sub_id}").json()["remaining_pickups"] == 2


def test_invoice_payment_patch(client, factory):
    order = factory.order()
    draft = client.put(
        f"{PREFIX}/orders/{order.id}/invoices/ack/draft",
        json={"items": [{"type": "SERVICE", "name": "Wash", "unit_price": 100}]},
    ).json()

    patched = client.patch(f"{PREFIX}/invoices/{draft['id']}/payment", json={"subscription_usage_items": 3})

    assert patched.status_code == 200
    assert patched.json()["subscription_usage_items"] == 3


def test_list_active_subscriptions_for_customer(client, factory):
    plan = factory.plan()
    sub = factory.subscription(plan)
    factory.subscription(factory.plan(name="Old"), user_id=sub.user_id, active=False)
    factory.subscription(plan)

    response = client.get(f"{PREFIX}/subscriptions/", params={"user_id": str(sub.user_id)})

    assert response.status_code == 200
    body = response.json()
    assert [s["id"] for s in body] == [str(sub.id)]
    assert body[0]["remaining_pickups"] == 4
