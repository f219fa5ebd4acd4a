import pytest
import stripe

from app.main import app
from app.services.payment_gateway import (
    PaymentGateway,
    PaymentGatewayError,
    apply_webhook_event,
    get_payment_gateway,
)


class FakeGateway:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def create_checkout_session(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"sessionId": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_payment_gateway, None)


def test_checkout_missing_email_makes_no_payment_call(client, fake_gateway):
    response = client.post(
        "/functions/create-checkout-session",
        json={"priceId": "price_1STciTIUfZRmRNv7PpiFZCGw", "registrationId": "r1"},
    )
    assert response.status_code == 400
    assert "error" in response.json()
    assert fake_gateway.calls == []


def test_checkout_missing_price_makes_no_payment_call(client, fake_gateway):
    response = client.post("/functions/create-checkout-session", json={"userEmail": "a@b.mx"})
    assert response.status_code == 400
    assert fake_gateway.calls == []


def test_checkout_success(client, fake_gateway):
    response = client.post(
        "/functions/create-checkout-session",
        json={
            "priceId": "price_1STciTIUfZRmRNv7PpiFZCGw",
            "registrationId": "r1",
            "userEmail": "rosa@pasteles.mx",
            "planName": "Básico mensual",
        },
        headers={"Origin": "https://charlitron360.vercel.app"},
    )
    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_test_123", "url": "https://checkout.stripe.test/cs_test_123"}
    assert response.headers["access-control-allow-origin"] == "*"
    call = fake_gateway.calls[0]
    assert call["email"] == "rosa@pasteles.mx"
    assert call["registration_id"] == "r1"
    assert call["plan_name"] == "Básico mensual"
    assert call["origin"] == "https://charlitron360.vercel.app"


def test_checkout_payment_error_is_400(client, fake_gateway):
    fake_gateway.error = PaymentGatewayError("No such price")
    response = client.post(
        "/functions/create-checkout-session",
        json={"priceId": "price_bad", "userEmail": "rosa@pasteles.mx"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "No such price"}


def test_checkout_without_stripe_key_is_400(client):
    response = client.post(
        "/functions/create-checkout-session",
        json={"priceId": "price_x", "userEmail": "rosa@pasteles.mx"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Payments are not configured"


def test_checkout_preflight(client):
    response = client.options("/functions/create-checkout-session")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "content-type" in response.headers["access-control-allow-headers"]


def test_customer_lookup_reuses_existing(monkeypatch):
    gateway = PaymentGateway()
    gateway._initialized = True
    gateway._enabled = True
    gateway._api_key = "sk_test_x"
    created = []

    class Listing:
        data = [type("Customer", (), {"id": "cus_existing"})()]

    lookups = []

    def fake_list(**kwargs):
        lookups.append(kwargs["email"])
        return Listing()

    monkeypatch.setattr(stripe.Customer, "list", fake_list)
    monkeypatch.setattr(stripe.Customer, "create", lambda **kwargs: created.append(kwargs))
    assert gateway.find_or_create_customer("Rosa@Pasteles.mx", "r1") == "cus_existing"
    assert lookups == ["Rosa@Pasteles.mx"]
    assert created == []


def test_customer_created_when_absent(monkeypatch):
    gateway = PaymentGateway()
    gateway._initialized = True
    gateway._enabled = True
    gateway._api_key = "sk_test_x"
    seen = {}

    class EmptyListing:
        data = []

    def fake_create(**kwargs):
        seen.update(kwargs)
        return type("Customer", (), {"id": "cus_new"})()

    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: EmptyListing())
    monkeypatch.setattr(stripe.Customer, "create", fake_create)
    assert gateway.find_or_create_customer(" Rosa@Pasteles.mx ", "r1") == "cus_new"
    assert seen["email"] == "Rosa@Pasteles.mx"
    assert seen["metadata"] == {"registration_id": "r1"}
    assert gateway._email_locks == {}


def test_webhook_rejects_unsigned_requests(client, monkeypatch):
    gateway = PaymentGateway()
    gateway._initialized = True
    gateway._webhook_secret = "whsec_test"
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        response = client.post("/functions/stripe-webhook", content=b"{}")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing Stripe-Signature header"

        bad = client.post("/functions/stripe-webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=bad"})
        assert bad.status_code == 400
    finally:
        app.dependency_overrides.pop(get_payment_gateway, None)


def test_webhook_checkout_completed_notes_payment(client, stores):
    registration = client.post(
        "/registrations",
        json={"business_name": "Globos Fiesta", "contact_name": "Leo", "email": "leo@globos.mx"},
    ).json()
    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "customer": "cus_1",
                "subscription": "sub_1",
                "customer_details": {"email": "leo@globos.mx"},
                "metadata": {"registration_id": registration["id"], "plan_name": "Destacado mensual"},
            }
        },
    }
    assert apply_webhook_event(event, stores.directory) is True

    status = client.get(f"/registrations/{registration['id']}").json()
    assert status["status"] == "pending"
    assert status["payment_status"] == "completed"
    assert status["admin_notes"] == "Pago completado - Plan: Destacado mensual"

    subscription = stores.directory.get_subscription("sub_1")
    assert subscription.status == "active"
    assert subscription.email == "leo@globos.mx"


def test_webhook_subscription_lifecycle(stores):
    updated = {
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_2",
                "status": "past_due",
                "customer": "cus_2",
                "items": {"data": [{"price": {"id": "price_1STco7IUfZRmRNv7f99ARIH0"}}]},
                "metadata": {},
            }
        },
    }
    assert apply_webhook_event(updated, stores.directory) is True
    subscription = stores.directory.get_subscription("sub_2")
    assert subscription.status == "past_due"
    assert subscription.plan_id == "destacado_anual"

    deleted = {"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_2", "customer": "cus_2"}}}
    apply_webhook_event(deleted, stores.directory)
    subscription = stores.directory.get_subscription("sub_2")
    assert subscription.status == "canceled"
    assert subscription.plan_id == "destacado_anual"

    assert apply_webhook_event({"type": "invoice.paid", "data": {"object": {}}}, stores.directory) is False


def test_robots_txt(client):
    response = client.get("/robots.txt")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "Disallow: /admin/" in body
    assert "Disallow: /api/" in body
    assert "Sitemap: https://charlitron.test/api/sitemap.xml" in body
    assert response.headers["cache-control"] == "public, max-age=86400"


def test_checkout_rejects_malformed_bodies_with_error_json(client, fake_gateway):
    bodies = [
        (b"not json", {"Content-Type": "application/json"}),
        (b"", {"Content-Type": "application/json"}),
        (b'{"priceId": 123, "userEmail": "a@b.mx"}', {"Content-Type": "application/json"}),
        (b"[1, 2]", {"Content-Type": "application/json"}),
    ]
    for content, headers in bodies:
        response = client.post("/functions/create-checkout-session", content=content, headers=headers)
        assert response.status_code == 400
        assert set(response.json()) == {"error"}
        assert response.headers["access-control-allow-origin"] == "*"
    assert fake_gateway.calls == []


@pytest.mark.parametrize("method", ["head", "post", "put", "delete", "patch"])
def test_robots_txt_other_methods(client, method):
    response = getattr(client, method)("/robots.txt")
    assert response.status_code == 405
    if method != "head":
        assert response.json() == {"message": "Method not allowed"}


def test_sitemap_lists_pages_categories_and_active_providers(client, stores):
    stores.directory.set_provider_active("prov_dj_norte", active=False)
    response = client.get("/api/sitemap.xml")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    body = response.text
    assert body.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<loc>https://charlitron.test/embed</loc>" in body
    assert "<loc>https://charlitron.test/categoria/banquetes</loc>" in body
    assert "<loc>https://charlitron.test/proveedor/prov_snacks</loc>" in body
    assert "prov_dj_norte" not in body


def test_unhandled_errors_return_diagnostic_body(stores, monkeypatch):
    from fastapi.testclient import TestClient

    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(stores.directory, "list_categories", explode)
    safe_client = TestClient(app, raise_server_exceptions=False)
    response = safe_client.get("/categories")
    assert response.status_code == 500
    payload = response.json()
    assert payload["error"] == "Internal server error"
    assert payload["path"] == "/categories"
    assert "traceback" not in payload
