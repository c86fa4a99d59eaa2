import logging
from typing import Any, Dict, Optional
from app.configs.app_settings import Settings, checkout_price_for_plan
from app.configs.stripe_config import INTERNAL_CUSTOMER_ID_KEY, StripeBillingClient
from app.custom_error import CustomerNotFoundError, DownstreamFailure, ServerError, ValidationError
from app.models.membership_models import (
    CheckoutSessionResponse,
    CustomerGroupResponse,
    CustomerGroupsResponse,
    MembershipStatusResponse,
    MembershipTier,
)
from app.services.customer_directory import CustomerDirectory
from app.services.group_membership import GroupMembership
from app.services.tier_classifier import ELIGIBLE_STATUSES, TierClassifier
from app.utils.downstream import call_with_timeout

logger = logging.getLogger(__name__)


class MembershipService:
    def __init__(
        self,
        settings: Settings,
        directory: CustomerDirectory,
        groups: GroupMembership,
        billing: StripeBillingClient,
        classifier: TierClassifier,
    ):
        self.settings = settings
        self.directory = directory
        self.groups = groups
        self.billing = billing
        self.classifier = classifier
        self.timeout_seconds = settings.DOWNSTREAM_TIMEOUT_SECONDS

    # ######################################################################################################################
    # Helper methods:
    # ######################################################################################################################

    async def _get_customer(self, customer_id: str) -> Dict[str, Any]:
        try:
            customer = await call_with_timeout("directory.find_by_id", self.directory.find_by_id(customer_id), self.timeout_seconds)
        except DownstreamFailure as e:
            logger.error(f"Error getting customer {customer_id} - {str(e)}")
            raise ServerError("Failed to get customer")

        if not customer:
            raise CustomerNotFoundError()
        return customer

    # ---------------------------------------------------------------------------------------------------------------------

    async def _find_billing_customer(self, customer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Stripe customer for an internal customer: metadata match first, then email"""
        customer_id = str(customer["id"])

        try:
            by_metadata = await call_with_timeout(
                "billing.find_customer_by_metadata",
                self.billing.find_customer_by_metadata(INTERNAL_CUSTOMER_ID_KEY, customer_id),
                self.timeout_seconds,
            )
            if by_metadata:
                return by_metadata
        except DownstreamFailure as e:
            # customer search is not enabled on every Stripe account
            logger.info(f"Stripe metadata search unavailable for customer {customer_id}, falling back to email: {e.detail}")

        if not customer.get("email"):
            return None
        return await call_with_timeout("billing.find_customer_by_email", self.billing.find_customer_by_email(customer["email"]), self.timeout_seconds)

    # ---------------------------------------------------------------------------------------------------------------------

    async def get_membership_status(self, customer_id: str) -> MembershipStatusResponse:
        """Current tier straight from Stripe. Any Stripe problem reads as "none"."""
        customer = await self._get_customer(customer_id)

        membership_status = MembershipTier.NONE
        billing_customer_id = None
        try:
            billing_customer = await self._find_billing_customer(customer)
            if billing_customer:
                billing_customer_id = billing_customer["id"]
                subscriptions = await call_with_timeout(
                    "billing.list_subscriptions", self.billing.list_subscriptions(billing_customer_id), self.timeout_seconds
                )
                active_like = next((sub for sub in subscriptions if sub.status in ELIGIBLE_STATUSES), None)
                if active_like:
                    membership_status = self.classifier.classify(active_like)

        except DownstreamFailure as e:
            logger.warning(f"⚠️ Membership lookup failed for customer {customer_id}, treating as none: {str(e)}")
            membership_status = MembershipTier.NONE

        return MembershipStatusResponse(customer_id=customer_id, membership_status=membership_status, billing_customer_id=billing_customer_id)

    # ---------------------------------------------------------------------------------------------------------------------

    async def get_customer_groups(self, customer_id: str) -> CustomerGroupsResponse:
        await self._get_customer(customer_id)

        try:
            groups = await call_with_timeout("groups.list_groups", self.groups.list_groups(customer_id), self.timeout_seconds)
        except DownstreamFailure as e:
            logger.error(f"Error listing groups for customer {customer_id} - {str(e)}")
            raise ServerError("Failed to get customer groups")

        return CustomerGroupsResponse(customer_id=customer_id, groups=[CustomerGroupResponse(**group) for group in groups])

    # ---------------------------------------------------------------------------------------------------------------------

    async def create_checkout_session(self, customer_id: str, plan: str) -> CheckoutSessionResponse:
        """Create a Stripe subscription checkout for the basic or premium plan"""
        plan = (plan or "").strip().lower()
        price_id = checkout_price_for_plan(self.settings, plan)
        if not price_id:
            raise ValidationError(f"Invalid plan: {plan or '(missing)'}")

        customer = await self._get_customer(customer_id)

        base_url = self.settings.CLIENT_DOMAIN
        success_url = f"{base_url}/account?success=true"
        cancel_url = f"{base_url}/membership?canceled=true"

        try:
            session = await call_with_timeout(
                "billing.create_subscription_checkout_session",
                self.billing.create_subscription_checkout_session(
                    price_id=price_id,
                    success_url=success_url,
                    cancel_url=cancel_url,
                    client_reference_id=str(customer["id"]),
                    customer_email=customer.get("email"),
                    billing_customer_id=customer.get("stripe_customer_id"),
                ),
                self.timeout_seconds,
            )
        except DownstreamFailure as e:
            logger.error(f"Error creating membership checkout session: {str(e)}")
            raise ServerError(f"Failed to create payment session: {e.detail}")

        logger.info(f"Created Stripe subscription checkout session {session['session_id']} for customer {customer_id} plan={plan}")
        return CheckoutSessionResponse(**session)
