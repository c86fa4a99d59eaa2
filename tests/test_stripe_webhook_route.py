"""HTTP contract of POST /api/v1/stripe/webhooks."""

import json

import pytest
from fastapi.testclient import TestClient

from app.main import build_webhook_dispatcher, create_app

from conftest import BASIC_GROUP, BASIC_PRICE, PREMIUM_GROUP, make_settings, sign, subscription_event

WEBHOOK_URL = "/api/v1/stripe/webhooks"


def post_event(client, body: bytes, header="sign"):
    headers = {"content-type": "application/json"}
    if header == "sign":
        headers["stripe-signature"] = sign(body)
    elif header is not None:
        headers["stripe-signature"] = header
    return client.post(WEBHOOK_URL, content=body, headers=headers)


class TestScenarios:
    def test_subscription_created_grants_basic(self, client, directory, groups):
        directory.add("c1", "ann@example.com", stripe_customer_id="cus_123")

        response = post_event(client, subscription_event("customer.subscription.created", "active", BASIC_PRICE))

        assert response.status_code == 200
        assert response.json()["processed"] is True
        assert response.json()["event_type"] == "customer.subscription.created"
        assert groups.groups_of("c1") == {BASIC_GROUP}
        assert directory.customers["c1"]["membership_tier"] == "basic"

    def test_subscription_deleted_revokes_premium(self, client, directory, groups):
        directory.add("c1", "ann@example.com", stripe_customer_id="cus_123", membership_tier="premium")
        groups.members[PREMIUM_GROUP].add("c1")

        response = post_event(client, subscription_event("customer.subscription.deleted", "canceled"))

        assert response.status_code == 200
        assert groups.groups_of("c1") == set()
        assert directory.customers["c1"]["membership_tier"] is None

    def test_tampered_signature_is_400(self, client, directory, groups):
        body = subscription_event()
        response = post_event(client, body + b" ", header=sign(body))

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Webhook Error: Invalid signature")
        assert sum(directory.calls.values()) == 0
        assert sum(groups.calls.values()) == 0

    def test_missing_signature_is_400_when_test_mode_off(self, client):
        response = post_event(client, subscription_event(), header=None)
        assert response.status_code == 400
        assert response.json()["detail"] == "Webhook Error: Missing stripe-signature header"

    def test_unknown_customer_is_acknowledged(self, client, directory, groups, billing, caplog):
        billing.add("cus_ghost", None)

        response = post_event(client, subscription_event(customer="cus_ghost"))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert groups.log == []
        assert "No customer matched Stripe customer cus_ghost" in caplog.text

    def test_downstream_failure_is_acknowledged(self, client, directory, groups):
        directory.add("c1", "ann@example.com", stripe_customer_id="cus_123")
        groups.fail_on.add("remove_member")

        response = post_event(client, subscription_event())

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert response.json()["processed"] is False

    def test_unhandled_event_type_is_acknowledged(self, client):
        body = b'{"id": "evt_7", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}'
        response = post_event(client, body)

        assert response.status_code == 200
        assert response.json()["message"] == "Event type checkout.session.completed not handled"

    @pytest.mark.parametrize(
        "subscription",
        [
            {"id": "sub_1", "customer": "cus_123", "status": 5},
            {"id": "sub_1", "customer": 42, "status": "active"},
            {"id": "sub_1", "customer": "cus_123", "status": "active", "items": {"data": ["si_1"]}},
        ],
    )
    def test_signed_but_malformed_subscription_is_acknowledged(self, client, directory, groups, subscription):
        directory.add("c1", "ann@example.com", stripe_customer_id="cus_123")
        body = json.dumps({"id": "evt_8", "type": "customer.subscription.updated", "data": {"object": subscription}}).encode()

        response = post_event(client, body)

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert groups.log == []


class TestTestMode:
    @pytest.fixture()
    def test_mode_client(self, directory, groups, billing):
        settings = make_settings(STRIPE_WEBHOOK_ALLOW_TEST=True)
        app = create_app(settings)
        app.state.webhook_dispatcher = build_webhook_dispatcher(settings, directory, groups, billing)
        return TestClient(app)

    def test_unsigned_ping_gets_test_ack(self, test_mode_client, directory, groups, billing):
        response = post_event(test_mode_client, b'{"ping": true}', header=None)

        assert response.status_code == 200
        assert response.json()["message"] == "ok-test"
        assert sum(directory.calls.values()) + sum(groups.calls.values()) + sum(billing.calls.values()) == 0

    def test_bad_signature_still_rejected_in_test_mode(self, test_mode_client):
        response = post_event(test_mode_client, subscription_event(), header="t=1,v1=deadbeef")
        assert response.status_code == 400
