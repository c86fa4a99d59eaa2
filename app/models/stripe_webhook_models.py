from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum
from app.models.membership_models import MembershipTier, SubscriptionSnapshot


class StripeWebhookEventResponse(BaseModel):
    """Response model for webhook processing"""

    status: str  # "success" or "error"
    message: str
    event_type: Optional[str] = None
    processed: bool = False


class WebhookEvent(BaseModel):
    """A verified Stripe event. Lives for one request only, never persisted."""

    id: str
    type: str
    raw_body: bytes
    signature_header: Optional[str] = None
    data_object: Dict[str, Any] = Field(default_factory=dict)
    # only set for customer.subscription.* events
    payload: Optional[SubscriptionSnapshot] = None


class TestPing(BaseModel):
    """Unsigned ping accepted because test mode is on"""

    __test__ = False  # not a pytest test class

    raw_body: bytes = b""


class DispatchOutcome(str, Enum):
    REJECTED = "rejected"
    TEST_PING = "test_ping"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"
    RECONCILED = "reconciled"
    FAILED = "failed"


class DispatchResult(BaseModel):
    outcome: DispatchOutcome
    message: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    customer_id: Optional[str] = None
    tier: Optional[MembershipTier] = None

    @property
    def acknowledged(self) -> bool:
        return self.outcome != DispatchOutcome.REJECTED
