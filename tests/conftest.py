"""Shared fixtures: settings, in-memory collaborators and Stripe-signed event builders."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from collections import Counter
from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.configs.app_settings import Settings
from app.main import build_membership_service, build_webhook_dispatcher, create_app
from app.models.membership_models import MembershipTier

TEST_WEBHOOK_SECRET = "whsec_test_secret"
BASIC_PRICE = "price_basic_monthly"
BASIC_YEARLY_PRICE = "price_basic_yearly"
PREMIUM_PRICE = "price_premium_monthly"
PREMIUM_YEARLY_PRICE = "price_premium_yearly"
BASIC_GROUP = "1"
PREMIUM_GROUP = "2"


class _Collaborator:
    """Records calls, can be told to fail or stall on a given method."""

    def __init__(self):
        self.calls: Counter = Counter()
        self.fail_on: set[str] = set()
        self.delay: dict[str, float] = {}

    async def _enter(self, method: str):
        self.calls[method] += 1
        if method in self.delay:
            await asyncio.sleep(self.delay[method])
        if method in self.fail_on:
            raise RuntimeError(f"{method} unavailable")


class FakeDirectory(_Collaborator):
    def __init__(self):
        super().__init__()
        self.customers: dict[str, dict[str, Any]] = {}

    def add(self, customer_id: str, email: str, stripe_customer_id: str | None = None, membership_tier: str | None = None):
        self.customers[customer_id] = {
            "id": customer_id,
            "email": email,
            "stripe_customer_id": stripe_customer_id,
            "membership_tier": membership_tier,
        }
        return self.customers[customer_id]

    async def find_by_external_id(self, billing_customer_id):
        await self._enter("find_by_external_id")
        return next((c for c in self.customers.values() if c["stripe_customer_id"] == billing_customer_id), None)

    async def find_by_email(self, email):
        await self._enter("find_by_email")
        return next((c for c in self.customers.values() if c["email"].lower() == email.lower()), None)

    async def find_by_id(self, customer_id):
        await self._enter("find_by_id")
        return self.customers.get(customer_id)

    async def update_tier_field(self, customer_id, tier: MembershipTier):
        await self._enter("update_tier_field")
        self.customers[customer_id]["membership_tier"] = None if tier == MembershipTier.NONE else tier.value

    async def link_external_id(self, customer_id, billing_customer_id):
        await self._enter("link_external_id")
        self.customers[customer_id]["stripe_customer_id"] = billing_customer_id


class FakeGroups(_Collaborator):
    def __init__(self):
        super().__init__()
        self.members: dict[str, set[str]] = {BASIC_GROUP: set(), PREMIUM_GROUP: set()}
        self.log: list[tuple[str, str, str]] = []

    def groups_of(self, customer_id: str) -> set[str]:
        return {group_id for group_id, members in self.members.items() if customer_id in members}

    async def add_member(self, group_id, customer_id):
        await self._enter("add_member")
        self.log.append(("add", group_id, customer_id))
        self.members.setdefault(group_id, set()).add(customer_id)

    async def remove_member(self, group_id, customer_id):
        await self._enter("remove_member")
        self.log.append(("remove", group_id, customer_id))
        members = self.members.setdefault(group_id, set())
        if customer_id not in members:
            return False
        members.discard(customer_id)
        return True

    async def list_groups(self, customer_id):
        await self._enter("list_groups")
        return [{"id": group_id, "code": f"tier-{group_id}", "name": None} for group_id in sorted(self.groups_of(customer_id))]


class FakeBilling(_Collaborator):
    def __init__(self):
        super().__init__()
        self.customers: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, list] = {}
        self.sessions: list[dict[str, Any]] = []

    def add(self, billing_customer_id: str, email: str | None, metadata: dict | None = None):
        self.customers[billing_customer_id] = {"id": billing_customer_id, "email": email, "deleted": False, "metadata": dict(metadata or {})}
        return self.customers[billing_customer_id]

    async def retrieve_customer(self, billing_customer_id):
        await self._enter("retrieve_customer")
        return self.customers[billing_customer_id]

    async def update_customer_metadata(self, billing_customer_id, metadata):
        await self._enter("update_customer_metadata")
        self.customers.setdefault(billing_customer_id, {"id": billing_customer_id, "email": None, "metadata": {}})["metadata"].update(metadata)

    async def find_customer_by_metadata(self, key, value):
        await self._enter("find_customer_by_metadata")
        return next((c for c in self.customers.values() if c["metadata"].get(key) == value), None)

    async def find_customer_by_email(self, email):
        await self._enter("find_customer_by_email")
        return next((c for c in self.customers.values() if c["email"] == email), None)

    async def list_subscriptions(self, billing_customer_id):
        await self._enter("list_subscriptions")
        return self.subscriptions.get(billing_customer_id, [])

    async def create_subscription_checkout_session(self, **kwargs):
        await self._enter("create_subscription_checkout_session")
        self.sessions.append(kwargs)
        return {"session_id": "cs_test_123", "session_url": "https://checkout.stripe.com/c/pay/cs_test_123"}


# ── settings ─────────────────────────────────────────────────────────────


def make_settings(**overrides) -> Settings:
    values = dict(
        SUPABASE_URL="http://localhost:54321",
        SUPABASE_KEY="test-service-key",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET=TEST_WEBHOOK_SECRET,
        BASIC_PRICE_IDS=f"{BASIC_PRICE},{BASIC_YEARLY_PRICE}",
        PREMIUM_PRICE_IDS=f"{PREMIUM_PRICE},{PREMIUM_YEARLY_PRICE}",
        BASIC_GROUP_ID=BASIC_GROUP,
        PREMIUM_GROUP_ID=PREMIUM_GROUP,
        DOWNSTREAM_TIMEOUT_SECONDS=0.5,
        CLIENT_DOMAIN="https://shop.example.com",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture()
def groups() -> FakeGroups:
    return FakeGroups()


@pytest.fixture()
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture()
def dispatcher(settings, directory, groups, billing):
    return build_webhook_dispatcher(settings, directory, groups, billing)


@pytest.fixture()
def membership_service(settings, directory, groups, billing):
    return build_membership_service(settings, directory, groups, billing)


@pytest.fixture()
def client(settings, dispatcher, membership_service):
    """TestClient without the lifespan, so no Supabase connection is made."""
    app = create_app(settings)
    app.state.webhook_dispatcher = dispatcher
    app.state.membership_service = membership_service
    return TestClient(app)


# ── Stripe events ────────────────────────────────────────────────────────


def subscription_event(
    event_type: str = "customer.subscription.created",
    status: str = "active",
    price: str | None = BASIC_PRICE,
    customer: str = "cus_123",
    email: str | None = None,
    event_id: str = "evt_1",
    extra_prices: tuple = (),
) -> bytes:
    items = [{"id": f"si_{i}", "object": "subscription_item", "price": {"id": p}} for i, p in enumerate(((price,) if price else ()) + tuple(extra_prices))]
    subscription = {
        "id": "sub_1",
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"object": "list", "data": items},
    }
    if email:
        subscription["customer_email"] = email
    event = {"id": event_id, "object": "event", "type": event_type, "data": {"object": subscription}}
    return json.dumps(event).encode()


def sign(body: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header for body: HMAC-SHA256 over "{t}.{body}"."""
    ts = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


@pytest.fixture()
def make_event():
    return subscription_event


@pytest.fixture()
def sign_payload():
    return sign
