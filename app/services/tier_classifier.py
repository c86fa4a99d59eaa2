from typing import Optional
from app.models.membership_models import MembershipTier, PriceTierMap, SubscriptionSnapshot

SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# only these statuses grant a paid tier. past_due, unpaid, canceled, incomplete, paused, ... all map to none.
ELIGIBLE_STATUSES = frozenset({"active", "trialing"})


def classify(snapshot: SubscriptionSnapshot, price_map: PriceTierMap, event_type: Optional[str] = None) -> MembershipTier:
    """Tier a subscription entitles its customer to. Pure, never raises.

    An eligible subscription whose prices are all unmapped grants no tier.
    With several line items the highest mapped tier wins.
    """
    if event_type == SUBSCRIPTION_DELETED:
        return MembershipTier.NONE
    if (snapshot.status or "").lower() not in ELIGIBLE_STATUSES:
        return MembershipTier.NONE

    tier = MembershipTier.NONE
    for price_id in snapshot.price_ids:
        candidate = price_map.tier_for_price(price_id)
        if candidate.rank > tier.rank:
            tier = candidate
    return tier


def has_unmapped_price(snapshot: SubscriptionSnapshot, price_map: PriceTierMap) -> bool:
    """True when an eligible subscription carries a price neither tier knows about"""
    return (snapshot.status or "").lower() in ELIGIBLE_STATUSES and any(
        price_map.tier_for_price(price_id) == MembershipTier.NONE for price_id in snapshot.price_ids or [None]
    )


class TierClassifier:
    def __init__(self, price_map: PriceTierMap):
        self.price_map = price_map

    def classify(self, snapshot: SubscriptionSnapshot, event_type: Optional[str] = None) -> MembershipTier:
        return classify(snapshot, self.price_map, event_type)

    def has_unmapped_price(self, snapshot: SubscriptionSnapshot) -> bool:
        return has_unmapped_price(snapshot, self.price_map)
