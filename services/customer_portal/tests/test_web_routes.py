from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from services.customer_portal.app import main
from services.customer_portal.app.config import Settings, get_settings
from services.customer_portal.app.tokenization import TokenizationError

from .utils import (
    FakePlatform,
    FakeTokenizer,
    card_payload,
    invoice_payload,
    org_path,
    request_json,
    subscription_payload,
    usage_payload,
)

DEMO_ORG = "demo-org"


def demo_path(suffix: str = "") -> str:
    return org_path(suffix, org_id=DEMO_ORG)


@pytest.fixture()
def platform():
    return (
        FakePlatform()
        .on("GET", demo_path("/subscription"), subscription_payload("starter"))
        .on(
            "GET",
            demo_path("/payment-methods"),
            [
                card_payload("pm_1", is_default=True),
                card_payload("pm_2", brand="mastercard", last4="5555"),
            ],
        )
        .on("GET", demo_path("/invoices"), [invoice_payload("in_3")])
        .on("GET", demo_path("/usage"), usage_payload(api_requests=(9_000, 10_000)))
    )


@pytest.fixture()
def tokenizer():
    return FakeTokenizer(result="pm_new")


@pytest.fixture()
def settings():
    return Settings(stripe_publishable_key="pk_test_123")


@pytest.fixture()
def client(platform, tokenizer, settings):
    main.app.dependency_overrides[main.get_billing_client] = platform.billing_client
    main.app.dependency_overrides[main.get_apikeys_client] = platform.apikeys_client
    main.app.dependency_overrides[main.get_tokenizer] = lambda: tokenizer
    main.app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def login(client: TestClient) -> None:
    response = client.post(
        "/login",
        data={"email": "demo@felora.io", "password": "demo"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"


def notification_messages(client: TestClient) -> list[tuple[str, str]]:
    return [(item["type"], item["message"]) for item in client.get("/api/notifications").json()]


def test_health_and_request_id_echo(client):
    response = client.get("/health", headers={"x-request-id": "req-42"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["x-request-id"] == "req-42"


def test_api_requires_session_and_pages_redirect(client):
    assert client.get("/api/billing/overview").status_code == 401
    page = client.get("/billing", follow_redirects=False)
    assert page.status_code == 303
    assert page.headers["location"] == "/login"


def test_login_rejects_wrong_password(client):
    response = client.post("/login", data={"email": "demo@felora.io", "password": "nope"})

    assert response.status_code == 401
    assert "Invalid email or password" in response.text


def test_logout_clears_session(client):
    login(client)
    client.post("/logout", follow_redirects=False)

    assert client.get("/api/keys").status_code == 401


def test_overview_forwards_token_and_renders_sections(client, platform):
    login(client)

    response = client.get("/api/billing/overview")

    assert response.status_code == 200
    body = response.json()
    assert body["subscription"]["plan_name"] == "Starter"
    assert body["invoices"][0]["amount_text"] == "$29.00"
    assert body["invoices"][0]["badge"]["label"] == "Open"
    assert body["usage"]["show_alert"] is True
    assert body["usage"]["meters"][0]["severity"] == "critical"
    assert body["usage"]["meters"][0]["bar_width"] == 90
    assert body["payment_methods_status"] == {"state": "ready", "error": None, "source": "live"}


def test_billing_page_renders_overview(client):
    login(client)

    response = client.get("/billing")

    assert response.status_code == 200
    assert "Starter" in response.text
    assert "$29.00" in response.text
    assert "approaching your plan limits" in response.text
    assert "pk_test_123" in response.text


def test_billing_page_survives_backend_outage(client, platform):
    platform.on("GET", demo_path("/invoices"), {"detail": "down"}, status_code=503)
    login(client)

    response = client.get("/billing")

    assert response.status_code == 200
    assert "Unable to load invoices." in response.text


def test_plan_change_updates_subscription_and_bumps_refresh(client, platform):
    platform.on("PUT", demo_path("/subscription"), subscription_payload("professional"))
    login(client)

    response = client.put(
        "/api/billing/subscription",
        json={"plan_id": "professional", "current_plan_id": "starter"},
    )

    assert response.status_code == 200
    assert response.json()["plan_id"] == "professional"
    assert request_json(platform.calls("PUT", demo_path("/subscription"))[0]) == {
        "plan_id": "professional"
    }
    assert client.get("/api/billing/overview").json()["refresh_trigger"] == 1
    assert ("success", "Subscription updated successfully!") in notification_messages(client)


def test_plan_change_to_current_plan_is_rejected(client, platform):
    login(client)

    response = client.put(
        "/api/billing/subscription",
        json={"plan_id": "starter", "current_plan_id": "starter"},
    )

    assert response.status_code == 400
    assert platform.calls("PUT") == []


def test_plan_change_uses_active_subscription_as_current_plan(client, platform):
    login(client)

    omitted = client.put("/api/billing/subscription", json={"plan_id": "starter"})
    stale = client.put(
        "/api/billing/subscription",
        json={"plan_id": "starter", "current_plan_id": "professional"},
    )

    assert omitted.status_code == 400
    assert stale.status_code == 400
    assert omitted.json()["detail"] == "The selected plan is already active."
    assert platform.calls("PUT") == []


def test_plan_change_when_subscription_lookup_fails(client, platform):
    platform.on("GET", demo_path("/subscription"), {"detail": "down"}, status_code=503)
    login(client)

    response = client.put("/api/billing/subscription", json={"plan_id": "professional"})

    assert response.status_code == 502
    assert platform.calls("PUT") == []


def test_plan_change_backend_failure_is_bad_gateway(client, platform):
    platform.on("PUT", demo_path("/subscription"), {"detail": "down"}, status_code=500)
    login(client)

    response = client.put("/api/billing/subscription", json={"plan_id": "enterprise"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to update subscription"


def test_plan_listing_and_preview(client):
    login(client)

    listing = client.get("/api/billing/plans", params={"current_plan_id": "starter"})
    preview = client.post(
        "/api/billing/plans/preview",
        json={"plan_id": "professional", "current_plan_id": "starter"},
    )
    unknown = client.post("/api/billing/plans/preview", json={"plan_id": "platinum"})

    assert listing.status_code == 200
    assert listing.json()["submit_label"] == "Current Plan"
    assert [plan["id"] for plan in listing.json()["plans"]] == ["starter", "professional", "enterprise"]
    assert preview.json()["can_submit"] is True
    assert "Professional ($99/month)" in preview.json()["summary"]["text"]
    assert unknown.status_code == 400


def test_cancel_requires_confirmation_flag(client, platform):
    platform.on(
        "POST", demo_path("/subscription/cancel"), subscription_payload(cancel_at_period_end=True)
    )
    login(client)

    unconfirmed = client.post("/api/billing/subscription/cancel")
    confirmed = client.post("/api/billing/subscription/cancel", params={"confirm": "true"})

    assert unconfirmed.status_code == 409
    assert unconfirmed.json()["detail"]["prompt"]
    assert confirmed.status_code == 200
    assert confirmed.json()["ending_notice"] == "Your subscription will end on Feb 15, 2025"
    assert len(platform.calls("POST", demo_path("/subscription/cancel"))) == 1


def test_cancel_without_subscription_is_not_found(client, platform):
    platform.on("GET", demo_path("/subscription"), {"detail": "none"}, status_code=404)
    login(client)

    response = client.post("/api/billing/subscription/cancel", params={"confirm": "true"})

    assert response.status_code == 404


ENROLLMENT = {
    "name": "Ada Lovelace",
    "email": "ada@example.com",
    "line1": "1 Analytical Way",
    "city": "London",
    "state": "LDN",
    "postal_code": "10001",
    "country": "US",
    "card_token": "pm_card_visa",
}


def test_enrollment_registers_payment_method(client, platform, tokenizer):
    platform.on("POST", demo_path("/setup-intent"), {"client_secret": "seti_1_secret_abc"})
    platform.on("POST", demo_path("/payment-methods"), card_payload("pm_new"))
    login(client)

    response = client.post("/api/billing/payment-methods", json=ENROLLMENT)

    assert response.status_code == 201
    body = response.json()
    assert body["state"] == "succeeded"
    assert body["payment_method"]["id"] == "pm_new"
    assert tokenizer.calls[0][0] == "seti_1_secret_abc"
    assert ("success", "Payment method added successfully!") in notification_messages(client)


def test_enrollment_declined_card_is_payment_required(client, platform, tokenizer):
    tokenizer.error = TokenizationError("card declined")
    platform.on("POST", demo_path("/setup-intent"), {"client_secret": "seti_1_secret_abc"})
    login(client)

    response = client.post("/api/billing/payment-methods", json=ENROLLMENT)

    assert response.status_code == 402
    assert response.json()["detail"] == {
        "state": "collecting",
        "payment_method": None,
        "error": "card declined",
    }
    assert platform.calls("POST", demo_path("/payment-methods")) == []


def test_enrollment_with_missing_fields_is_bad_request(client, platform, tokenizer):
    login(client)

    response = client.post("/api/billing/payment-methods", json={"name": "Ada"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"].startswith("Please complete the required fields")
    assert platform.calls("POST") == []
    assert tokenizer.calls == []


def test_remove_payment_method_needs_confirmation(client, platform):
    platform.on("DELETE", demo_path("/payment-methods/pm_2"), httpx.Response(204))
    login(client)

    unconfirmed = client.delete("/api/billing/payment-methods/pm_2")
    confirmed = client.delete("/api/billing/payment-methods/pm_2", params={"confirm": "true"})
    missing = client.delete("/api/billing/payment-methods/pm_9", params={"confirm": "true"})

    assert unconfirmed.status_code == 409
    assert confirmed.status_code == 204
    assert missing.status_code == 404
    assert len(platform.calls("DELETE")) == 1


def test_set_default_payment_method(client, platform):
    platform.on("PUT", demo_path("/payment-methods/pm_2/default"), httpx.Response(204))
    login(client)

    response = client.put("/api/billing/payment-methods/pm_2/default")

    assert response.status_code == 200
    assert [method["id"] for method in response.json() if method["is_default"]] == ["pm_2"]


CREATED_KEY = {
    "id": "key-1",
    "keyId": "fk_live_1",
    "key": "fk_live_secret",
    "name": "CI",
    "scopes": ["artifacts:read"],
    "createdAt": "2025-01-15T00:00:00Z",
}


def test_api_key_lifecycle(client, platform):
    platform.on("POST", "/v1/apikeys", CREATED_KEY)
    platform.on("GET", demo_path("/apikeys"), [CREATED_KEY])
    platform.on("DELETE", "/v1/apikeys/fk_live_1", httpx.Response(204))
    platform.on("POST", "/v1/apikeys/verify", {"ok": True, "orgId": DEMO_ORG})
    login(client)

    created = client.post("/api/keys", json={"name": "CI", "scopes": ["artifacts:read"]})
    listed = client.get("/api/keys")
    verified = client.post("/api/keys/verify", json={"api_key": "fk_live_secret"})
    unconfirmed = client.delete("/api/keys/fk_live_1")
    revoked = client.delete("/api/keys/fk_live_1", params={"confirm": "true"})

    assert created.status_code == 201
    assert created.json()["secret"] == "fk_live_secret"
    assert request_json(platform.calls("POST", "/v1/apikeys")[0])["orgId"] == DEMO_ORG
    assert listed.json()[0]["secret"] is None
    assert verified.json()["ok"] is True
    assert unconfirmed.status_code == 409
    assert revoked.status_code == 204
    assert len(platform.calls("DELETE")) == 1


def test_api_key_validation_is_bad_request(client, platform):
    login(client)

    response = client.post("/api/keys", json={"name": "  ", "scopes": ["artifacts:read"]})

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "message": "Please enter a name for your API key",
        "field": "name",
    }
    assert platform.calls("POST", "/v1/apikeys") == []


def test_api_key_listing_backend_failure_is_bad_gateway(client, platform):
    platform.on("GET", demo_path("/apikeys"), {"detail": "down"}, status_code=503)
    login(client)

    response = client.get("/api/keys")

    assert response.status_code == 502
    assert response.json()["detail"] == "down"


def test_dashboard_page_lists_keys(client, platform):
    platform.on("GET", demo_path("/apikeys"), [CREATED_KEY])
    login(client)

    response = client.get("/dashboard")

    assert response.status_code == 200
    assert "fk_live_1" in response.text
    assert "fk_live_secret" not in response.text
    assert "Read Artifacts" in response.text
    assert 'data-endpoint="/api/keys/fk_live_1"' in response.text
    assert '/static/portal.js' in response.text


def test_account_page_shows_billing_contact(client, platform):
    platform.on("GET", demo_path("/billing"), {"email": "billing@felora.io", "name": "Demo Org"})
    login(client)

    response = client.get("/account")

    assert response.status_code == 200
    assert "billing@felora.io" in response.text
    assert DEMO_ORG in response.text


def test_anonymous_requests_do_not_store_notification_queues(client):
    before = len(main.NOTIFICATIONS)

    for _ in range(20):
        assert client.get("/api/notifications").json() == []
        client.get("/dashboard", follow_redirects=False)

    assert len(main.NOTIFICATIONS) == before
    assert "portal_session" not in client.cookies


def test_logout_discards_notification_queue(client):
    login(client)
    client.get("/api/notifications")
    queues = len(main.NOTIFICATIONS)

    client.post("/logout", follow_redirects=False)

    assert len(main.NOTIFICATIONS) == queues - 1


def test_billing_page_wires_actions_to_json_routes(client):
    login(client)

    response = client.get("/billing")

    assert 'id="plan-form"' in response.text
    assert 'data-current-plan-id="starter"' in response.text
    assert 'data-endpoint="/api/billing/payment-methods/pm_2/default"' in response.text
    assert 'data-endpoint="/api/billing/subscription/cancel"' in response.text
    assert 'id="payment-method-form"' in response.text
    assert "https://js.stripe.com/v3/" in response.text


def test_billing_page_without_stripe_key_skips_card_widget(client, settings):
    settings.stripe_publishable_key = ""
    login(client)

    response = client.get("/billing")

    assert "js.stripe.com" not in response.text
    assert "Card payments are not configured." in response.text


def test_portal_script_is_served(client):
    response = client.get("/static/portal.js")

    assert response.status_code == 200
    assert "confirm=true" in response.text
    assert "createPaymentMethod" in response.text
