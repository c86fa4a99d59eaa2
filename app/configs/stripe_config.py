import stripe
import asyncio
import logging
from typing import Any, Dict, List, Optional
from app.models.membership_models import SubscriptionSnapshot

logger = logging.getLogger(__name__)

# metadata key on the Stripe customer that points back at our internal customer id
INTERNAL_CUSTOMER_ID_KEY = "internal_customer_id"


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict of a StripeObject. Current stripe releases no longer make StripeObject a mapping, only to_dict() is safe."""
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj) if isinstance(obj, dict) else {}


def _customer_to_dict(customer: Any) -> Dict[str, Any]:
    data = _as_dict(customer)
    return {
        "id": data.get("id"),
        "email": data.get("email"),
        "deleted": bool(data.get("deleted", False)),
        "metadata": dict(_as_dict(data.get("metadata"))),
    }


def _search_literal(value: str) -> str:
    # Stripe search query strings are single quoted, backslash escapes
    return value.replace("\\", "\\\\").replace("'", "\\'")

class StripeBillingClient:
    """Thin async wrapper over the (sync) stripe library. Each call runs in a worker thread so it never blocks the event loop."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def retrieve_customer(self, billing_customer_id: str) -> Dict[str, Any]:
        """Retrieve a Stripe customer by id"""
        customer = await asyncio.to_thread(stripe.Customer.retrieve, billing_customer_id, api_key=self.api_key)
        return _customer_to_dict(customer)

    async def update_customer_metadata(self, billing_customer_id: str, metadata: Dict[str, str]) -> None:
        """Merge keys into the Stripe customer's metadata"""
        await asyncio.to_thread(stripe.Customer.modify, billing_customer_id, metadata=metadata, api_key=self.api_key)

    async def find_customer_by_metadata(self, key: str, value: str) -> Optional[Dict[str, Any]]:
        """Search customers by a metadata value. Search is not enabled on every account, callers fall back to email."""
        result = await asyncio.to_thread(stripe.Customer.search, query=f"metadata['{key}']:'{_search_literal(value)}'", limit=1, api_key=self.api_key)
        data = _as_dict(result).get("data") or []
        return _customer_to_dict(data[0]) if data else None

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        result = await asyncio.to_thread(stripe.Customer.list, email=email, limit=1, api_key=self.api_key)
        data = _as_dict(result).get("data") or []
        return _customer_to_dict(data[0]) if data else None

    async def list_subscriptions(self, billing_customer_id: str) -> List[SubscriptionSnapshot]:
        """All subscriptions of a customer, any status"""
        result = await asyncio.to_thread(
            stripe.Subscription.list, customer=billing_customer_id, status="all", limit=10, api_key=self.api_key
        )
        return [SubscriptionSnapshot.from_stripe_subscription(sub) for sub in _as_dict(result).get("data") or []]

    async def create_subscription_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        customer_email: Optional[str] = None,
        billing_customer_id: Optional[str] = None,
    ) -> Dict[str, str]:
        """Create a Stripe Checkout Session in subscription mode"""

        session_config = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            # lets the webhook write-back find the customer even before the metadata link exists
            "subscription_data": {"metadata": {INTERNAL_CUSTOMER_ID_KEY: client_reference_id}},
        }

        # Stripe rejects customer and customer_email together; a known customer wins
        if billing_customer_id:
            session_config["customer"] = billing_customer_id
        elif customer_email:
            session_config["customer_email"] = customer_email

        session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.api_key, **session_config)
        session_data = _as_dict(session)
        return {"session_id": session_data.get("id"), "session_url": session_data.get("url")}
