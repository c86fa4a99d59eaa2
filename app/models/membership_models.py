from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import FrozenSet, List, Optional
from enum import Enum


class MembershipTier(str, Enum):
    NONE = "none"
    BASIC = "basic"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {MembershipTier.NONE: 0, MembershipTier.BASIC: 1, MembershipTier.PREMIUM: 2}


class PriceTierMap(BaseModel):
    """Stripe price ids that grant each paid tier. The two sets never overlap."""

    model_config = ConfigDict(frozen=True)

    basic: FrozenSet[str] = frozenset()
    premium: FrozenSet[str] = frozenset()

    @model_validator(mode="after")
    def check_disjoint(self) -> "PriceTierMap":
        overlap = self.basic & self.premium
        if overlap:
            raise ValueError(f"price ids mapped to both basic and premium: {', '.join(sorted(overlap))}")
        return self

    def tier_for_price(self, price_id: Optional[str]) -> MembershipTier:
        if price_id in self.basic:
            return MembershipTier.BASIC
        if price_id in self.premium:
            return MembershipTier.PREMIUM
        return MembershipTier.NONE


class TierGroups(BaseModel):
    """Customer group id for each paid tier"""

    model_config = ConfigDict(frozen=True)

    basic: str
    premium: str

    def group_for(self, tier: MembershipTier) -> Optional[str]:
        if tier == MembershipTier.BASIC:
            return self.basic
        if tier == MembershipTier.PREMIUM:
            return self.premium
        return None

    def all_groups(self) -> List[str]:
        return [self.basic, self.premium]


class SubscriptionSnapshot(BaseModel):
    """The parts of a Stripe subscription object the reconciliation needs"""

    billing_subscription_id: str
    billing_customer_id: str
    status: str
    price_ids: List[str] = Field(default_factory=list)
    customer_email: Optional[str] = None

    @property
    def price_id(self) -> Optional[str]:
        return self.price_ids[0] if self.price_ids else None

    @classmethod
    def from_stripe_subscription(cls, subscription: dict) -> "SubscriptionSnapshot":
        """Raises ValueError (pydantic's ValidationError included) when the object is not shaped like a subscription"""
        items = subscription.get("items") or {}
        if not isinstance(items, dict) or not isinstance(items.get("data") or [], list):
            raise ValueError("subscription items is not a list object")

        price_ids = []
        for item in items.get("data") or []:
            if not isinstance(item, dict):
                raise ValueError(f"subscription item is not an object: {item!r}")
            price = item.get("price") or {}
            price_id = price.get("id") if isinstance(price, dict) else price
            if price_id:
                price_ids.append(price_id)

        # "customer" is an id unless the event was sent with the customer expanded
        customer = subscription.get("customer")
        customer_email = subscription.get("customer_email")
        if isinstance(customer, dict):
            customer_email = customer_email or customer.get("email")
            customer = customer.get("id")

        return cls(
            billing_subscription_id=subscription.get("id") or "",
            billing_customer_id=customer or "",
            status=subscription.get("status") or "",
            price_ids=price_ids,
            customer_email=customer_email,
        )


class CustomerIdentity(BaseModel):
    internal_customer_id: str
    billing_customer_id: Optional[str] = None
    email: Optional[str] = None


# ################################################################################################################################
# membership routes


class MembershipStatusResponse(BaseModel):
    customer_id: str
    membership_status: MembershipTier
    billing_customer_id: Optional[str] = None


class CustomerGroupResponse(BaseModel):
    id: str
    code: Optional[str] = None
    name: Optional[str] = None


class CustomerGroupsResponse(BaseModel):
    customer_id: str
    groups: List[CustomerGroupResponse]


class MembershipCheckoutRequest(BaseModel):
    customer_id: str
    plan: str  # "basic" or "premium"


class CheckoutSessionResponse(BaseModel):
    session_id: str
    session_url: str
