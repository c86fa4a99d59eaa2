import logging
from typing import Optional
from app.custom_error import DownstreamFailure, SignatureError
from app.models.membership_models import MembershipTier
from app.models.stripe_webhook_models import DispatchOutcome, DispatchResult, TestPing, WebhookEvent
from app.services.group_reconciler import GroupReconciler
from app.services.identity_resolver import IdentityResolver
from app.services.signature_verifier import SignatureVerifier
from app.services.tier_classifier import TierClassifier
from app.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

MONITORED_EVENT_TYPES = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)


class WebhookDispatcher:
    """Runs one Stripe event through verify -> filter -> resolve -> classify -> reconcile.

    Received -> Verified -> (Ignored | Resolving) -> (Unmatched | Reconciling) -> Acknowledged
    Received -> Rejected only on signature failure. Every other failure is logged and still acknowledged,
    otherwise Stripe keeps retrying the event.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        resolver: IdentityResolver,
        classifier: TierClassifier,
        reconciler: GroupReconciler,
        locks: Optional[KeyedLock] = None,
    ):
        self.verifier = verifier
        self.resolver = resolver
        self.classifier = classifier
        self.reconciler = reconciler
        self.locks = locks or KeyedLock()

    # ---------------------------------------------------------------------------------------------------------------------

    async def handle(self, raw_body: Optional[bytes], signature_header: Optional[str]) -> DispatchResult:
        try:
            verified = self.verifier.verify(raw_body, signature_header)
        except SignatureError as e:
            logger.error(f"❌ Webhook signature verification failed: {e.reason}")
            return DispatchResult(outcome=DispatchOutcome.REJECTED, message=e.reason)

        if isinstance(verified, TestPing):
            return DispatchResult(outcome=DispatchOutcome.TEST_PING, message="ok-test")

        event = verified
        logger.info(f"🔔 Received Stripe webhook: {event.type} id={event.id}")

        if event.type not in MONITORED_EVENT_TYPES:
            logger.info(f"Unhandled webhook event type: {event.type}")
            return DispatchResult(
                outcome=DispatchOutcome.IGNORED, message=f"Event type {event.type} not handled", event_id=event.id, event_type=event.type
            )

        if event.payload is None:
            return DispatchResult(
                outcome=DispatchOutcome.IGNORED,
                message=f"Event {event.id} carries no usable subscription object",
                event_id=event.id,
                event_type=event.type,
            )

        try:
            # same-customer events are processed one at a time, in the order they arrived
            async with self.locks.hold(f"billing:{event.payload.billing_customer_id}"):
                return await self._process_subscription_event(event)
        except Exception as e:
            logger.exception(f"❌ Unexpected error handling webhook event={event.id} type={event.type}: {e}")
            return DispatchResult(
                outcome=DispatchOutcome.FAILED, message="Event acknowledged, processing failed", event_id=event.id, event_type=event.type
            )

    # ---------------------------------------------------------------------------------------------------------------------

    async def _process_subscription_event(self, event: WebhookEvent) -> DispatchResult:
        snapshot = event.payload

        try:
            identity = await self.resolver.resolve(snapshot)
        except DownstreamFailure as e:
            logger.error(
                f"❌ DOWNSTREAM_FAILURE event={event.id} type={event.type} billing_customer={snapshot.billing_customer_id} "
                f"step={e.step} error={e.detail}"
            )
            return DispatchResult(
                outcome=DispatchOutcome.FAILED, message=f"Identity resolution failed at {e.step}", event_id=event.id, event_type=event.type
            )

        if identity is None:
            logger.warning(f"⚠️ No customer matched Stripe customer {snapshot.billing_customer_id} (event={event.id} type={event.type})")
            return DispatchResult(
                outcome=DispatchOutcome.UNMATCHED,
                message=f"No customer matched Stripe customer {snapshot.billing_customer_id}",
                event_id=event.id,
                event_type=event.type,
            )

        customer_id = identity.internal_customer_id
        tier = self.classifier.classify(snapshot, event.type)
        if tier == MembershipTier.NONE and event.type != "customer.subscription.deleted" and self.classifier.has_unmapped_price(snapshot):
            logger.warning(
                f"⚠️ UNMAPPED_PRICE event={event.id} customer={customer_id} prices={','.join(snapshot.price_ids) or '-'} -> tier=none"
            )

        try:
            async with self.locks.hold(f"customer:{customer_id}"):
                await self.reconciler.reconcile(customer_id, tier)
        except DownstreamFailure as e:
            logger.error(f"❌ DOWNSTREAM_FAILURE event={event.id} type={event.type} customer={customer_id} step={e.step} error={e.detail}")
            return DispatchResult(
                outcome=DispatchOutcome.FAILED,
                message=f"Reconciliation failed at {e.step}",
                event_id=event.id,
                event_type=event.type,
                customer_id=customer_id,
                tier=tier,
            )

        logger.info(f"✅ Updated {identity.email or customer_id} -> tier: {tier.value}")
        return DispatchResult(
            outcome=DispatchOutcome.RECONCILED,
            message=f"Customer {customer_id} reconciled to tier {tier.value}",
            event_id=event.id,
            event_type=event.type,
            customer_id=customer_id,
            tier=tier,
        )
